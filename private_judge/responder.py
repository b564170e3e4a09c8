"""HTTP client for the LLM response layer that produces lawyer, judge and juror output."""

from __future__ import annotations

from typing import Any

import httpx

from .config import settings
from .payloads import JudgeResponse, JurorResponse, LawyerResponse, validate_model


class ResponderError(RuntimeError):
    """Raised when the response layer cannot be reached or answers with an error.

    Messages start with one of the retryable error tags where the failure is transient,
    so the job queue's retry policy can classify them.
    """


def _error_tag(status: int) -> str:
    if status == 429:
        return "rate_limit_exceeded"
    if status in (502, 503, 504):
        return "temporary_service_unavailable"
    if status >= 500:
        return "openai_api_error"
    return "responder_rejected"


class ResponderClient:
    """Async client for the LLM response layer.

    Every call returns a validated contract object; out-of-bounds responses raise the
    domain ``ValidationError``.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {}
        token = token if token is not None else settings.worker_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.responder_url).rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds or settings.responder_timeout_seconds),
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ResponderClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise ResponderError(f"network_timeout: POST {path}: {e}") from e
        except httpx.RequestError as e:
            raise ResponderError(f"connection_error: POST {path}: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ResponderError(
                f"{_error_tag(status)}: POST {path} returned {status}: {e.response.text[:200]}"
            ) from e
        try:
            return resp.json()
        except ValueError as e:
            raise ResponderError(f"openai_api_error: invalid JSON from {path}: {resp.text[:200]}") from e

    async def lawyer_response(
        self,
        *,
        room_id: str,
        round_number: int,
        round_type: str,
        side: str,
        argument: dict[str, Any],
        opponent_argument: dict[str, Any],
        previous_turns: list[dict[str, Any]],
    ) -> LawyerResponse:
        data = await self._post(
            "/lawyer",
            {
                "room_id": room_id,
                "round_number": round_number,
                "round_type": round_type,
                "side": side,
                "argument": argument,
                "opponent_argument": opponent_argument,
                "previous_turns": previous_turns,
            },
        )
        return validate_model(LawyerResponse, data, label="lawyer response")

    async def judge_response(
        self,
        *,
        room_id: str,
        debate_sessions: list[dict[str, Any]],
        decision_type: str,
    ) -> JudgeResponse:
        data = await self._post(
            "/judge",
            {"room_id": room_id, "debate_sessions": debate_sessions, "decision_type": decision_type},
        )
        return validate_model(JudgeResponse, data, label="judge response")

    async def juror_response(
        self,
        *,
        room_id: str,
        juror_number: int,
        profile: dict[str, Any],
        debate_sessions: list[dict[str, Any]],
    ) -> JurorResponse:
        data = await self._post(
            "/juror",
            {
                "room_id": room_id,
                "juror_number": juror_number,
                "profile": profile,
                "debate_sessions": debate_sessions,
            },
        )
        return validate_model(JurorResponse, data, label="juror response")
