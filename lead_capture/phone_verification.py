"""Phone number lookups against the Numverify validation API."""

import logging
from typing import Any, Dict, Optional

import httpx

from lead_capture.config import Settings
from lead_capture.errors import (
    ConfigError,
    InvalidCountryCode,
    InvalidFormat,
    ProviderUnavailable,
    VerificationError,
)
from lead_capture.models import VerificationInfo

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_PREFIX = "1"

_ERROR_TYPES: Dict[str, type[VerificationError]] = {
    "no_phone_number_provided": InvalidFormat,
    "non_numeric_phone_number_provided": InvalidFormat,
    "invalid_country_code": InvalidCountryCode,
}


def with_country_code(digits: str, prefix: str = DEFAULT_COUNTRY_PREFIX) -> str:
    return digits if digits.startswith(prefix) else f"{prefix}{digits}"


def _provider_error(error: Dict[str, Any]) -> Exception:
    info = error.get("info")
    error_cls = _ERROR_TYPES.get(str(error.get("type")))
    if error_cls is None:
        return ProviderUnavailable(info or "Could not validate phone number at this time.")
    return error_cls(info or None)


class NumverifyClient:
    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._settings = settings
        self._transport = transport

    async def verify(self, raw_digits: str) -> VerificationInfo:
        """Look up ``raw_digits`` and normalize the provider's answer.

        Raises ``ConfigError`` when no API key is configured, a
        ``VerificationError`` subclass for input problems the provider
        reports, and ``ProviderUnavailable`` for anything else that keeps us
        from getting an answer.
        """

        access_key = self._settings.numverify_api_key
        if not access_key:
            logger.error("Numverify API key is not configured.")
            raise ConfigError()

        if not raw_digits or not raw_digits.isdigit():
            raise InvalidFormat()
        number = with_country_code(raw_digits)

        try:
            async with httpx.AsyncClient(
                base_url=self._settings.numverify_base_url,
                timeout=self._settings.numverify_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get("/validate", params={"access_key": access_key, "number": number})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error calling Numverify API", extra={"error": str(exc)})
            raise ProviderUnavailable() from exc

        if not isinstance(data, dict):
            raise ProviderUnavailable()
        if data.get("success") is False:
            error = data.get("error") or {}
            logger.warning(
                "Numverify API error",
                extra={"number": number, "error_type": error.get("type"), "error_code": error.get("code")},
            )
            raise _provider_error(error)

        return VerificationInfo(
            is_valid=bool(data.get("valid")),
            line_type=data.get("line_type"),
            carrier=data.get("carrier"),
            international_format=data.get("international_format"),
            local_format=data.get("local_format"),
            country_code=data.get("country_code"),
            raw_response=data,
        )
