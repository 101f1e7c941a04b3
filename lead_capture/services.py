import logging
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from lead_capture.crm import (
    GoHighLevelClient,
    build_complete_notes,
    build_contact,
    build_partial_notes,
    contact_id_from,
)
from lead_capture.errors import InvalidPayload, LeadCaptureError
from lead_capture.models import (
    CompleteLead,
    LeadRecord,
    PartialLead,
    SubmissionResponse,
    SubmissionType,
    validate_payload,
)
from lead_capture.phone import phone_digits

logger = logging.getLogger(__name__)

LEAD_ID_PATTERN = re.compile(r"^lead_\d+_[0-9a-z]{9}$")
_BASE36 = string.digits + string.ascii_lowercase

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_lead_id(now: datetime | None = None) -> str:
    """Return an id shaped ``lead_<epoch-ms>_<9 base36 chars>``."""

    epoch_ms = int((now or utc_now()).timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"lead_{epoch_ms}_{suffix}"


class LeadSubmissionService:
    """Validate lead payloads and write them to the CRM.

    Rate limiting and JSON parsing happen at the HTTP boundary; by the time a
    payload reaches this service it is a decoded JSON value of unknown shape.
    """

    def __init__(self, crm: GoHighLevelClient, *, clock: Clock = utc_now) -> None:
        self._crm = crm
        self._clock = clock

    async def submit_partial(self, payload: Any) -> SubmissionResponse:
        result = validate_payload(PartialLead, payload)
        if not result.ok:
            raise InvalidPayload(
                f"Invalid partial form data - {result.first_error.message}",
                fields=result.errors,
            )
        lead = result.value
        now = self._clock()
        stamp = now.isoformat()
        record = LeadRecord(
            **lead.model_dump(exclude={"lead_id"}),
            lead_id=lead.lead_id or generate_lead_id(now),
            submission_type=SubmissionType.PARTIAL,
            timestamp=stamp,
            last_updated=stamp,
        )
        logger.info("Partial lead accepted", extra={"lead_id": record.lead_id})

        contact = build_contact(record, self._crm.location_id, build_partial_notes(record, now), now)
        created = await self._crm.create_contact(contact)
        contact_id = contact_id_from(created)
        logger.info("Forwarded partial lead to CRM", extra={"lead_id": record.lead_id, "contact_id": contact_id})
        return SubmissionResponse(lead_id=record.lead_id, contact_id=contact_id, timestamp=record.timestamp)

    async def submit_complete(self, payload: Any) -> SubmissionResponse:
        result = validate_payload(CompleteLead, payload)
        if not result.ok:
            raise InvalidPayload(result.first_error.message, fields=result.errors)
        lead = result.value
        now = self._clock()
        data = lead.model_dump(exclude={"timestamp", "email", "is_property_listed"})
        record = LeadRecord(
            **data,
            email=str(lead.email),
            is_property_listed=bool(lead.is_property_listed),
            submission_type=SubmissionType.COMPLETE,
            timestamp=lead.timestamp or now.isoformat(),
            last_updated=now.isoformat(),
        )
        logger.info("Complete lead accepted", extra={"lead_id": record.lead_id})

        notes = build_complete_notes(record, now)
        contact = build_contact(record, self._crm.location_id, notes, now)
        written = await self._create_or_update(phone_digits(record.phone), contact, notes)
        contact_id = contact_id_from(written)
        logger.info("Forwarded complete lead to CRM", extra={"lead_id": record.lead_id, "contact_id": contact_id})
        return SubmissionResponse(lead_id=record.lead_id, contact_id=contact_id, timestamp=record.timestamp)

    async def _create_or_update(self, digits: str, contact: Dict[str, Any], notes: str) -> Dict[str, Any]:
        """Update the contact holding this phone number, or create one.

        A failed lookup falls through to create: a duplicate contact is
        preferable to a lost lead. Existing notes are kept and the new block is
        appended after them.
        """

        try:
            contact_id = await self._crm.find_contact_id_by_phone(digits)
        except LeadCaptureError as exc:
            logger.warning("CRM contact lookup failed; creating a new contact", extra={"error": exc.message})
            contact_id = None

        if contact_id is None:
            return await self._crm.create_contact(contact)

        try:
            existing = await self._crm.get_contact(contact_id)
        except LeadCaptureError as exc:
            logger.warning("Could not load existing CRM notes", extra={"contact_id": contact_id, "error": exc.message})
            existing = {}
        if existing.get("notes"):
            contact = {**contact, "notes": f"{existing['notes']}\n\n{notes}"}

        updated = await self._crm.update_contact(contact_id, contact)
        if contact_id_from(updated) is None:
            updated = {**updated, "id": contact_id}
        return updated
