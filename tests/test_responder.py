import json

import httpx
import pytest
from conftest import judge_content, juror_content, lawyer_content

from private_judge.errors import ValidationError
from private_judge.jobs import is_retryable_error
from private_judge.responder import ResponderClient, ResponderError


def _client(handler) -> ResponderClient:
    return ResponderClient(
        base_url="http://responder.test", token="secret", transport=httpx.MockTransport(handler)
    )


async def _lawyer(client: ResponderClient):
    return await client.lawyer_response(
        room_id="room-1",
        round_number=1,
        round_type="first",
        side="A",
        argument={"title": "Cars choke our streets"},
        opponent_argument={"title": "Cars keep shops alive"},
        previous_turns=[],
    )


@pytest.mark.asyncio
async def test_lawyer_response_is_validated() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=lawyer_content())

    async with _client(handler) as client:
        response = await _lawyer(client)

    assert len(response.key_points) == 3
    assert seen[0].url.path == "/lawyer"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(seen[0].content)["side"] == "A"


@pytest.mark.asyncio
async def test_judge_and_juror_responses() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/judge":
            return httpx.Response(200, json=judge_content(80, 65))
        return httpx.Response(200, json=juror_content("B", 9))

    async with _client(handler) as client:
        judge = await client.judge_response(room_id="room-1", debate_sessions=[], decision_type="final_verdict")
        juror = await client.juror_response(
            room_id="room-1", juror_number=3, profile={"occupation": "retiree"}, debate_sessions=[]
        )

    assert judge.average_score == 72.5
    assert juror.vote == "B"
    assert juror.confidence == 9


@pytest.mark.asyncio
async def test_out_of_bounds_response_raises_validation_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=lawyer_content(key_points=1))

    async with _client(handler) as client:
        with pytest.raises(ValidationError):
            await _lawyer(client)


@pytest.mark.parametrize(
    ("status", "tag", "retryable"),
    [
        (429, "rate_limit_exceeded", True),
        (503, "temporary_service_unavailable", True),
        (500, "openai_api_error", True),
        (400, "responder_rejected", False),
    ],
)
@pytest.mark.asyncio
async def test_http_errors_are_tagged(status: int, tag: str, retryable: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="nope")

    async with _client(handler) as client:
        with pytest.raises(ResponderError) as exc_info:
            await _lawyer(client)

    message = str(exc_info.value)
    assert message.startswith(tag)
    assert is_retryable_error(message) is retryable


@pytest.mark.asyncio
async def test_transport_errors_are_retryable() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    for handler, tag in ((timeout, "network_timeout"), (refused, "connection_error")):
        async with _client(handler) as client:
            with pytest.raises(ResponderError, match=tag):
                await _lawyer(client)


@pytest.mark.asyncio
async def test_invalid_json_is_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    async with _client(handler) as client:
        with pytest.raises(ResponderError) as exc_info:
            await _lawyer(client)
    assert is_retryable_error(str(exc_info.value))
