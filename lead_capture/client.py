"""Async client for the lead capture API, as used by the form controllers."""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """The API could not be reached or answered with an error.

    ``status_code`` is ``None`` when no response was received at all.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, payload: Any = None) -> None:
        self.message = message
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class LeadApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 20.0,
    ) -> None:
        self._base_url = base_url
        self._transport = transport
        self._timeout = timeout

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(path, json=body)
        except httpx.HTTPError as exc:
            logger.warning("Lead API request failed", extra={"path": path, "error": str(exc)})
            raise ApiError(f"Could not reach {path}") from exc

        try:
            payload = response.json() if response.content else {}
        except ValueError as exc:
            raise ApiError(
                f"Failed to parse API response: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            ) from exc

        if not response.is_success:
            message = payload.get("error") if isinstance(payload, dict) else None
            raise ApiError(
                message or f"API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                payload=payload,
            )
        if not isinstance(payload, dict):
            raise ApiError("Unexpected API response", status_code=response.status_code, payload=payload)
        return payload

    async def validate_phone(self, digits: str) -> Dict[str, Any]:
        return await self._post("/api/validate-phone", {"phoneNumber": digits})

    async def submit_partial(self, lead: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post("/api/submit-partial", lead)

    async def submit_complete(self, lead: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post("/api/submit-complete", lead)
