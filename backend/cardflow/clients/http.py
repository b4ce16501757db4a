# Talks to the cardflow form service over HTTP. One client object satisfies
# every protocol the engine consumes: SessionStore, ProfileScorer, Submitter
# and AnalyticsSink.
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Type

import httpx
from pydantic import ValidationError as PydanticValidationError

from cardflow.core import config
from cardflow.engine.errors import (
    FlowError,
    PersistenceError,
    RateLimitError,
    ScoringError,
    SessionNotFoundError,
    SubmissionError,
)
from cardflow.engine.types import SessionPayload

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull the human message out of the service's error envelope."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    detail = body.get("detail", body) if isinstance(body, dict) else body
    if isinstance(detail, dict):
        error = detail.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if detail.get("message"):
            return detail["message"]
    if isinstance(detail, list) and detail:
        # FastAPI request validation errors
        first = detail[0]
        if isinstance(first, dict) and first.get("msg"):
            return first["msg"]
    if isinstance(detail, str):
        return detail
    return f"HTTP {response.status_code}"


def _persistence_error(response: httpx.Response) -> PersistenceError:
    message = _error_message(response)
    if response.status_code == 429:
        return RateLimitError(message, status_code=429)
    if response.status_code == 404:
        return SessionNotFoundError(message, status_code=404)
    return PersistenceError(message, status_code=response.status_code)


class FormsApiClient:
    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FormsApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _url(self, form_id: str, *parts: str) -> str:
        return "/".join([self.base_url, "forms", form_id, *parts])

    async def _request(self, method: str, url: str, error: Type[FlowError], **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise error(f"Request failed: {exc}") from exc
        if response.is_error:
            logger.debug("%s %s -> %s", method, url, response.status_code)
            # 404 / 429 get their own types so the session controller can react
            if error is PersistenceError:
                raise _persistence_error(response)
            if error is SubmissionError:
                raise SubmissionError(_error_message(response), status_code=response.status_code)
            raise error(_error_message(response))
        return response

    def _json(self, response: httpx.Response, error: Type[FlowError]) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("%s %s returned a non-JSON body", response.request.method, response.request.url)
            if error is ScoringError:
                raise ScoringError("Service response was not JSON") from exc
            raise error("Service response was not JSON", status_code=response.status_code) from exc

    def _session(self, response: httpx.Response) -> SessionPayload:
        body = self._json(response, PersistenceError)
        try:
            payload = SessionPayload.model_validate(body)
        except PydanticValidationError as exc:
            logger.warning("Malformed session payload from %s: %s", response.request.url, exc)
            raise PersistenceError("Malformed session payload", status_code=response.status_code) from exc
        if not payload.session_token:
            raise PersistenceError("Malformed session payload", status_code=response.status_code)
        return payload

    # ---- SessionStore ----

    async def create_session(self, form_id: str) -> SessionPayload:
        response = await self._request("POST", self._url(form_id, "sessions"), PersistenceError)
        return self._session(response)

    async def get_session(self, form_id: str, token: str) -> SessionPayload:
        response = await self._request("GET", self._url(form_id, "sessions", token), PersistenceError)
        return self._session(response)

    async def update_session(self, form_id: str, token: str, current_index: int, partial_data: Dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            self._url(form_id, "sessions", token),
            PersistenceError,
            json={"currentCardIndex": current_index, "partialData": partial_data},
        )

    async def complete_session(self, form_id: str, token: str) -> None:
        await self._request("POST", self._url(form_id, "sessions", token, "complete"), PersistenceError)

    # ---- ProfileScorer ----

    async def score_profile(self, form_id: str, answers: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", self._url(form_id, "profile"), ScoringError, json={"answers": dict(answers)})
        return self._json(response, ScoringError)

    # ---- Submitter ----

    async def submit(self, form_id: str, answers: Mapping[str, Any], session_token: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"answers": dict(answers)}
        if session_token:
            body["sessionToken"] = session_token
        response = await self._request("POST", self._url(form_id, "submissions"), SubmissionError, json=body)
        result = self._json(response, SubmissionError)
        if not isinstance(result, dict):
            raise SubmissionError("Unexpected submission response", status_code=response.status_code)
        return result

    # ---- AnalyticsSink ----

    async def track_card_time(self, form_id: str, *, token: str, card_id: str, time_seconds: int) -> None:
        await self._request(
            "POST",
            self._url(form_id, "analytics", "card-time"),
            PersistenceError,
            json={"sessionToken": token, "cardId": card_id, "timeSeconds": time_seconds},
        )
