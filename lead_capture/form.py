"""Headless controllers for the two-step property form.

``PropertyForm`` drives address capture, phone/consent capture, phone
verification and the partial submission. ``DetailsForm`` sends the complete
submission once the session holds a lead id. Both talk to the API through an
injected ``LeadApi`` and report conversions through an injected
``AnalyticsSink``, so they run the same against the real API or a fake.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Set

from lead_capture.analytics import AnalyticsSink, LoggingAnalytics
from lead_capture.client import ApiError
from lead_capture.models import CamelModel
from lead_capture.phone import format_phone_number, is_phone_format_valid, phone_digits

logger = logging.getLogger(__name__)

ADDRESS = "address"
PHONE = "phone"
CONSENT = "consent"
FIELDS = (ADDRESS, PHONE, CONSENT)

ADDRESS_INVALID = "Please enter a valid property address"
ADDRESS_REQUIRED = "Address is required"
PHONE_REQUIRED = "Phone number is required"
PHONE_FORMAT_INVALID = "Please enter a valid phone number format (XXX) XXX-XXXX"
PHONE_FORMAT_ON_SUBMIT = "Invalid phone format. Please use (XXX) XXX-XXXX"
CONSENT_REQUIRED = "You must consent to be contacted"
PHONE_API_FORMAT = "Invalid phone number format for API validation."
PHONE_API_INVALID = "This phone number appears to be invalid."
PHONE_API_NOT_PERSONAL = (
    "Please provide a personal mobile or landline number. Business numbers are not accepted."
)
PHONE_API_SERVICE_FAILED = "Phone validation service failed."
PHONE_API_UNREACHABLE = "Could not validate phone number. Check connection."
PHONE_API_FAILED = "Phone number validation failed."
SUBMIT_FAILED = "Failed to save lead data"
LEAD_NOT_STARTED = "Please start by entering your property address."


class FormStep(str, Enum):
    ADDRESS = "address"
    PHONE_CONSENT = "phone_consent"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


class PhoneCheck(str, Enum):
    UNCHECKED = "unchecked"
    VALIDATING = "validating"
    VERIFIED = "verified"
    REJECTED = "rejected"


class FormStateError(RuntimeError):
    """An input event arrived in a step that has no such input."""


class LeadApi(Protocol):
    async def validate_phone(self, digits: str) -> Dict[str, Any]:
        ...

    async def submit_partial(self, lead: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def submit_complete(self, lead: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class AddressSelection:
    """A candidate picked from the address autocomplete."""

    formatted_address: str
    place_id: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


class LeadDraft(CamelModel):
    """Working copy of the lead held for the duration of the session."""

    lead_id: Optional[str] = None
    address: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    place_id: Optional[str] = None
    phone: Optional[str] = None
    consent: Optional[bool] = None
    carrier: Optional[str] = None
    phone_line_type: Optional[str] = None
    timestamp: Optional[str] = None
    last_updated: Optional[str] = None


class PropertyDetails(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    property_condition: Optional[str] = None
    timeframe: Optional[str] = None
    price: Optional[str] = None
    is_property_listed: Optional[bool] = None
    comments: Optional[str] = None
    referral_source: Optional[str] = None


@dataclass
class FormSession:
    """Session state shared between the form steps and pages."""

    draft: LeadDraft = field(default_factory=LeadDraft)

    @property
    def lead_id(self) -> Optional[str]:
        return self.draft.lead_id

    def assign_lead_id(self, lead_id: str, timestamp: Optional[str] = None) -> None:
        """Record the id issued by the partial submission and when the lead was first seen."""

        if self.draft.lead_id and self.draft.lead_id != lead_id:
            raise FormStateError(f"lead id already assigned: {self.draft.lead_id}")
        self.draft.lead_id = lead_id
        if timestamp and not self.draft.timestamp:
            self.draft.timestamp = timestamp

    def payload(self) -> Dict[str, Any]:
        data = self.draft.model_dump(by_alias=True, exclude_none=True)
        data["lastUpdated"] = datetime.now(timezone.utc).isoformat()
        return data


@dataclass
class FormErrors:
    address: Optional[str] = None
    phone: Optional[str] = None
    phone_api: Optional[str] = None
    consent: Optional[str] = None
    submit: Optional[str] = None

    def has_field_error(self) -> bool:
        return any((self.address, self.phone, self.phone_api, self.consent))


Navigator = Callable[[str], None]


class PropertyForm:
    """Address step, then phone and consent step, then the partial submission."""

    def __init__(
        self,
        api: LeadApi,
        *,
        session: Optional[FormSession] = None,
        analytics: Optional[AnalyticsSink] = None,
        navigate: Optional[Navigator] = None,
        next_path: str = "/property-listed",
        conversion_target: Optional[str] = None,
    ) -> None:
        self._api = api
        self.session = session or FormSession()
        self._analytics = analytics or LoggingAnalytics()
        self._navigate = navigate or (lambda path: None)
        self._next_path = next_path
        self._conversion_target = conversion_target

        self.state = FormStep.ADDRESS
        self.phone_check = PhoneCheck.UNCHECKED
        self.errors = FormErrors()
        self.touched: Set[str] = set()
        self._phone_revision = 0
        self._disposed = False

    @property
    def draft(self) -> LeadDraft:
        return self.session.draft

    @property
    def is_validating(self) -> bool:
        return self.phone_check is PhoneCheck.VALIDATING

    @property
    def is_submitting(self) -> bool:
        return self.state is FormStep.SUBMITTING

    @property
    def can_submit(self) -> bool:
        if self.state not in (FormStep.PHONE_CONSENT, FormStep.FAILED) or self.is_validating:
            return False
        if self.errors.has_field_error():
            return False
        return bool((self.draft.address or "").strip() and self.draft.phone and self.draft.consent)

    def dispose(self) -> None:
        """Stop applying results; anything still in flight is ignored when it lands."""

        self._disposed = True

    def _accepts_input(self, event: str) -> bool:
        """False while a submission is in flight; those events are dropped."""

        if self.state is FormStep.SUBMITTING:
            logger.debug("Ignoring input during submission", extra={"event": event})
            return False
        if self.state is FormStep.FAILED:
            self.state = FormStep.PHONE_CONSENT
        if self.state is not FormStep.PHONE_CONSENT:
            raise FormStateError(f"{event} is not accepted in the {self.state.value} step")
        return True

    def select_address(self, selection: AddressSelection) -> None:
        """Take an autocomplete candidate; this is the only way out of the address step."""

        if self.state is FormStep.SUBMITTING:
            return
        if self.state not in (FormStep.ADDRESS, FormStep.PHONE_CONSENT, FormStep.FAILED):
            raise FormStateError(f"address selection is not accepted in the {self.state.value} step")
        self._analytics.track_event(
            "property_address_selected",
            {"address": selection.formatted_address, "placeId": selection.place_id},
        )
        self.draft.address = selection.formatted_address
        self.draft.place_id = selection.place_id
        self.draft.street_address = selection.street_address
        self.draft.city = selection.city
        self.draft.state = selection.state
        self.draft.postal_code = selection.postal_code
        self.errors.address = None
        self.touched.add(ADDRESS)
        self.state = FormStep.PHONE_CONSENT

    def change_phone(self, raw: str) -> str:
        """Apply a keystroke: reformat, drop any verification, recheck format if touched."""

        if not self._accepts_input("phone input"):
            return self.draft.phone or ""
        formatted = format_phone_number(raw)
        if phone_digits(formatted) != phone_digits(self.draft.phone):
            self.draft.carrier = None
            self.draft.phone_line_type = None
        self.draft.phone = formatted
        self._phone_revision += 1
        self.phone_check = PhoneCheck.UNCHECKED
        self.errors.phone_api = None

        if PHONE in self.touched:
            self.errors.phone = None if is_phone_format_valid(formatted) else PHONE_FORMAT_INVALID
        return formatted

    def set_consent(self, checked: bool) -> None:
        if not self._accepts_input("consent input"):
            return
        self.draft.consent = checked

    async def blur(self, name: str) -> bool:
        """Mark a field touched and validate just that field."""

        if name not in FIELDS:
            raise ValueError(f"unknown field: {name}")
        if self.state is FormStep.SUBMITTING:
            return False
        if name != ADDRESS:
            self._accepts_input(f"{name} blur")
        self.touched.add(name)
        return await self._validate(name)

    def _check_address(self, message: str) -> bool:
        if (self.draft.address or "").strip():
            self.errors.address = None
            return True
        self.errors.address = message
        return False

    def _check_phone_format(self, invalid_message: str) -> bool:
        phone = self.draft.phone
        if not phone:
            self.errors.phone = PHONE_REQUIRED
            return False
        if not is_phone_format_valid(phone):
            self.errors.phone = invalid_message
            return False
        self.errors.phone = None
        return True

    def _check_consent(self) -> bool:
        if self.draft.consent:
            self.errors.consent = None
            return True
        self.errors.consent = CONSENT_REQUIRED
        return False

    async def _validate(self, name: str) -> bool:
        if name == ADDRESS:
            return self._check_address(ADDRESS_INVALID)
        if name == CONSENT:
            return self._check_consent()

        if not self._check_phone_format(PHONE_FORMAT_INVALID):
            return False
        if self.phone_check is PhoneCheck.VALIDATING:
            return False
        if self.phone_check is not PhoneCheck.VERIFIED or self.errors.phone_api:
            return await self._verify_phone()
        return True

    async def _verify_phone(self) -> bool:
        """Ask the verification proxy about the current number.

        A result is only applied if the form is still mounted and the phone
        value has not changed since the request went out.
        """

        phone = self.draft.phone
        if not is_phone_format_valid(phone):
            self.errors.phone_api = PHONE_API_FORMAT
            self.phone_check = PhoneCheck.REJECTED
            return False

        revision = self._phone_revision
        self.phone_check = PhoneCheck.VALIDATING
        self.errors.phone_api = None
        result: Dict[str, Any] = {}
        try:
            result = await self._api.validate_phone(phone_digits(phone))
        except ApiError as exc:
            error = PHONE_API_UNREACHABLE if exc.status_code is None else (exc.message or PHONE_API_SERVICE_FAILED)
        else:
            if not result.get("isValid"):
                error = PHONE_API_INVALID
            elif not result.get("isValidLead"):
                error = PHONE_API_NOT_PERSONAL
            else:
                error = None

        if self._disposed or revision != self._phone_revision:
            logger.debug("Discarding stale phone verification result")
            return False

        if error:
            self.errors.phone_api = error
            self.phone_check = PhoneCheck.REJECTED
            return False
        self.errors.phone_api = None
        self.phone_check = PhoneCheck.VERIFIED
        self.draft.carrier = result.get("carrier")
        self.draft.phone_line_type = result.get("lineType")
        return True

    def _fail(self) -> None:
        self.state = FormStep.FAILED

    async def submit(self) -> bool:
        """Validate everything, verify the phone if needed, then send the partial lead.

        Returns ``True`` once the lead id is stored and navigation has fired.
        A submit while one is already running, or after success, does nothing.
        """

        if self.state in (FormStep.SUBMITTING, FormStep.SUBMITTED) or self.is_validating:
            return False
        if self.state is FormStep.ADDRESS:
            self.touched.add(ADDRESS)
            self._check_address(ADDRESS_REQUIRED)
            return False

        self.touched.update(FIELDS)
        self.state = FormStep.SUBMITTING
        self.errors.submit = None

        checks = [
            self._check_address(ADDRESS_REQUIRED),
            self._check_phone_format(PHONE_FORMAT_ON_SUBMIT),
            self._check_consent(),
        ]
        if not all(checks):
            self._fail()
            return False

        if self.phone_check is not PhoneCheck.VERIFIED:
            verified = await self._verify_phone()
            if self._disposed:
                return False
            if not verified:
                self.errors.phone_api = self.errors.phone_api or PHONE_API_FAILED
                self._fail()
                return False

        self.errors = FormErrors()
        try:
            result = await self._api.submit_partial(self.session.payload())
        except ApiError as exc:
            if self._disposed:
                return False
            logger.warning("Partial submission failed", extra={"status_code": exc.status_code})
            self.errors.submit = exc.message or SUBMIT_FAILED
            self._fail()
            return False
        if self._disposed:
            return False

        lead_id = result.get("leadId")
        if not result.get("success") or not lead_id:
            self.errors.submit = result.get("error") or SUBMIT_FAILED
            self._fail()
            return False

        self.session.assign_lead_id(lead_id, result.get("timestamp"))
        self._analytics.track_event(
            "form_submitted",
            {"address": self.draft.address, "hasPhone": bool(self.draft.phone)},
        )
        self._analytics.track_conversion(self._conversion_target, {"leadId": lead_id})
        self.state = FormStep.SUBMITTED
        self._navigate(self._next_path)
        return True


class DetailsStep(str, Enum):
    EDITING = "editing"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


class DetailsForm:
    """Second stage: full contact and property details for an existing lead."""

    def __init__(
        self,
        api: LeadApi,
        session: FormSession,
        *,
        analytics: Optional[AnalyticsSink] = None,
        navigate: Optional[Navigator] = None,
        next_path: str = "/thank-you",
    ) -> None:
        self._api = api
        self.session = session
        self._analytics = analytics or LoggingAnalytics()
        self._navigate = navigate or (lambda path: None)
        self._next_path = next_path
        self.state = DetailsStep.EDITING
        self.error: Optional[str] = None
        self._disposed = False

    def dispose(self) -> None:
        self._disposed = True

    async def submit(self, details: PropertyDetails) -> bool:
        """Send the complete lead; never before a partial submission issued a lead id."""

        if self.state in (DetailsStep.SUBMITTING, DetailsStep.SUBMITTED):
            return False
        if not self.session.lead_id:
            self.error = LEAD_NOT_STARTED
            self.state = DetailsStep.FAILED
            return False

        self.state = DetailsStep.SUBMITTING
        self.error = None
        payload = {**self.session.payload(), **details.model_dump(by_alias=True, exclude_none=True)}
        try:
            result = await self._api.submit_complete(payload)
        except ApiError as exc:
            if self._disposed:
                return False
            self.error = exc.message or SUBMIT_FAILED
            self.state = DetailsStep.FAILED
            return False
        if self._disposed:
            return False
        if not result.get("success"):
            self.error = result.get("error") or SUBMIT_FAILED
            self.state = DetailsStep.FAILED
            return False

        self._analytics.track_event("details_submitted", {"leadId": self.session.lead_id})
        self.state = DetailsStep.SUBMITTED
        self._navigate(self._next_path)
        return True
