"""GoHighLevel contact API client and the lead -> contact mapping."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from lead_capture.config import Settings
from lead_capture.errors import ConfigError, ProviderUnavailable, UpstreamError
from lead_capture.models import LeadRecord, SubmissionType
from lead_capture.phone import phone_digits

logger = logging.getLogger(__name__)

LEAD_SOURCE = "Website Lead Form"
BASE_TAG = "Website Lead"
NOTES_TIMESTAMP_FORMAT = "%m/%d/%Y, %I:%M:%S %p UTC"


def _line(label: str, value: Any) -> str:
    return f"- {label}: {value}\n"


def build_partial_notes(record: LeadRecord, now: datetime) -> str:
    notes = f"Initial Lead Submission ({now.strftime(NOTES_TIMESTAMP_FORMAT)}):\n"
    notes += _line("Property Address", record.address or "Not provided")
    notes += _line("Phone", record.phone or "Not provided")
    if record.consent:
        notes += _line("Consent", "Granted")
    if record.place_id:
        notes += _line("Google Place ID", record.place_id)
    notes += _line("Lead ID", record.lead_id)
    return notes


def build_complete_notes(record: LeadRecord, now: datetime) -> str:
    """Labeled summary of everything known about the lead.

    The CRM's structured fields only hold part of the record, so this block is
    the human-readable audit trail and gets appended on every update.
    """

    submitted_at = now.strftime(NOTES_TIMESTAMP_FORMAT)
    notes = f"Complete Lead Submission ({submitted_at}):\n\n"

    notes += "PROPERTY INFORMATION:\n"
    notes += _line("Property Address", record.address or "Not provided")
    if record.street_address:
        notes += _line("Street Address", record.street_address)
    if record.city:
        notes += _line("City", record.city)
    if record.state:
        notes += _line("State", record.state)
    if record.postal_code:
        notes += _line("Postal Code", record.postal_code)
    if record.place_id:
        notes += _line("Google Place ID", record.place_id)
    notes += _line("Property Condition", record.property_condition or "Not provided")
    notes += _line("Is Property Listed", "Yes" if record.is_property_listed else "No")
    notes += _line("Asking Price", record.price or "Not provided")
    notes += _line("Timeframe", record.timeframe or "Not provided")

    notes += "\nCONTACT INFORMATION:\n"
    notes += _line("Full Name", f"{record.first_name} {record.last_name}")
    notes += _line("Phone", record.phone)
    notes += _line("Email", record.email)

    notes += "\nADDITIONAL DETAILS:\n"
    notes += _line("Lead ID", record.lead_id)
    notes += _line("Initial Submission", record.timestamp or "Unknown")
    notes += _line("Complete Submission", submitted_at)

    if record.comments:
        notes += f"\nCOMMENTS:\n{record.comments}\n"
    if record.referral_source:
        notes += f"\nReferral Source: {record.referral_source}\n"
    return notes


def build_contact(record: LeadRecord, location_id: str, notes: str, now: datetime) -> Dict[str, Any]:
    """Shape a lead into the CRM contact schema.

    Fields the CRM has no column for go into the ``customField`` and
    ``customData`` bags instead of the top level.
    """

    custom_data: Dict[str, Any] = {
        "leadId": record.lead_id,
        "submissionType": record.submission_type.value,
        "timestamp": now.isoformat(),
    }
    if record.place_id:
        custom_data["placeId"] = record.place_id

    if record.submission_type is SubmissionType.PARTIAL:
        return {
            "name": "Property Lead",
            "phone": phone_digits(record.phone),
            "address1": record.address or "",
            "locationId": location_id,
            "source": LEAD_SOURCE,
            "customField": {"ppc_address": record.address or ""},
            "tags": [BASE_TAG, "Partial Lead"],
            "notes": notes,
            "customData": custom_data,
        }

    return {
        "name": f"{record.first_name} {record.last_name}",
        "phone": phone_digits(record.phone),
        "email": record.email,
        "address1": record.address or "",
        "city": record.city or "",
        "state": record.state or "",
        "postalCode": record.postal_code or "",
        "locationId": location_id,
        "source": LEAD_SOURCE,
        "customField": {
            "ppc_address": record.address or "",
            "ppc_condition": record.property_condition or "",
            "ppc_timeframe": record.timeframe or "",
            "ppc_property_listed": "Yes" if record.is_property_listed else "No",
            "ppc_asking_price": record.price or "",
        },
        "tags": [BASE_TAG, "Complete Lead"],
        "notes": notes,
        "customData": custom_data,
    }


def contact_id_from(payload: Dict[str, Any]) -> Optional[str]:
    contact = payload.get("contact")
    if isinstance(contact, dict) and contact.get("id"):
        return str(contact["id"])
    return str(payload["id"]) if payload.get("id") else None


class GoHighLevelClient:
    """Thin async wrapper over the GoHighLevel v1 contacts endpoints."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def location_id(self) -> str:
        self.require_credentials()
        return self._settings.crm_location_id or ""

    def require_credentials(self) -> None:
        if not self._settings.crm_enabled:
            raise ConfigError("Go High Level API credentials not configured")

    def _client(self) -> httpx.AsyncClient:
        self.require_credentials()
        return httpx.AsyncClient(
            base_url=self._settings.crm_base_url,
            headers={"Authorization": f"Bearer {self._settings.crm_api_key}"},
            timeout=self._settings.crm_timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        async with self._client() as client:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                logger.error("CRM request failed", extra={"method": method, "url": url, "error": str(exc)})
                raise ProviderUnavailable("Failed to reach Go High Level") from exc

        if not response.is_success:
            logger.error(
                "Go High Level API error",
                extra={"status_code": response.status_code, "reason": response.reason_phrase, "body": response.text},
            )
            raise UpstreamError(
                f"Failed to send to Go High Level: {response.reason_phrase}",
                upstream_status=response.status_code,
                body=response.text,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                "Go High Level returned an unreadable response",
                upstream_status=response.status_code,
                body=response.text,
            ) from exc

    async def create_contact(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/contacts/", json=contact)

    async def update_contact(self, contact_id: str, contact: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/contacts/{contact_id}", json=contact)

    async def get_contact(self, contact_id: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"/contacts/{contact_id}")
        contact = payload.get("contact")
        return contact if isinstance(contact, dict) else payload

    async def find_contact_id_by_phone(self, digits: str) -> Optional[str]:
        params = {"locationId": self.location_id, "lookupField": "phone", "lookupValue": digits}
        payload = await self._request("GET", "/contacts/lookup", params=params)
        contacts = payload.get("contacts") or []
        if contacts and isinstance(contacts[0], dict) and contacts[0].get("id"):
            return str(contacts[0]["id"])
        return None
