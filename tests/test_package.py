import importlib
import pkgutil

import pytest

import private_judge

MODULES = sorted(
    name for _, name, _ in pkgutil.walk_packages(private_judge.__path__, prefix="private_judge.")
)


@pytest.mark.parametrize("name", MODULES)
def test_module_has_docstring(name: str) -> None:
    module = importlib.import_module(name)
    assert module.__doc__ and module.__doc__.strip()
