from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from lead_capture.phone import is_phone_format_valid

PHONE_FORMAT_MESSAGE = "Invalid phone number format"


class SubmissionType(str, Enum):
    PARTIAL = "partial"
    COMPLETE = "complete"


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


def _require_display_phone(value: str) -> str:
    if not is_phone_format_valid(value):
        raise ValueError(PHONE_FORMAT_MESSAGE)
    return value


class PartialLead(CamelModel):
    """First-stage payload: address and phone, plus whatever the form already knows.

    ``consent`` is optional here; the form refuses to submit until it is
    checked, and the endpoint records whatever arrives.
    """

    address: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1)
    consent: bool | None = None
    place_id: str | None = None
    lead_id: str | None = None
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    carrier: str | None = None
    phone_line_type: str | None = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        return _require_display_phone(value)


class CompleteLead(CamelModel):
    """Second-stage payload keyed by the lead id issued on the partial submission.

    Required fields are declared first and in the order they are reported.
    """

    address: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    property_condition: str = Field(..., min_length=1)
    timeframe: str = Field(..., min_length=1)
    price: str = Field(..., min_length=1)
    lead_id: str = Field(..., min_length=1)

    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    place_id: str | None = None
    consent: bool | None = None
    is_property_listed: bool | None = None
    comments: str | None = None
    referral_source: str | None = None
    carrier: str | None = None
    phone_line_type: str | None = None
    timestamp: str | None = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        return _require_display_phone(value)

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return str(value) if value else ""
        return value


class LeadRecord(CamelModel):
    """A validated lead stamped with its tracking fields, ready for the CRM."""

    lead_id: str
    submission_type: SubmissionType
    timestamp: str
    last_updated: str
    address: str
    phone: str
    consent: bool | None = None
    place_id: str | None = None
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    property_condition: str | None = None
    timeframe: str | None = None
    price: str | None = None
    is_property_listed: bool = False
    comments: str | None = None
    referral_source: str | None = None
    carrier: str | None = None
    phone_line_type: str | None = None


class FieldError(BaseModel):
    field: str
    message: str


LeadModel = TypeVar("LeadModel", bound=BaseModel)


@dataclass
class ValidationResult(Generic[LeadModel]):
    """Outcome of checking a payload against a schema: either a model or field failures."""

    value: Optional[LeadModel] = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors

    @property
    def first_error(self) -> Optional[FieldError]:
        return self.errors[0] if self.errors else None


def _is_missing(error: dict[str, Any]) -> bool:
    return error["type"] in {"missing", "string_too_short"} or error.get("input") in (None, "")


def _error_message(name: str, error: dict[str, Any]) -> str:
    if _is_missing(error):
        return f"{name} is required"
    if error["type"] == "value_error":
        return str(error.get("ctx", {}).get("error") or error["msg"])
    return f"{name}: {error['msg']}"


def validate_payload(model: Type[LeadModel], data: Any) -> ValidationResult[LeadModel]:
    """Check ``data`` against ``model`` and collect one failure per offending field.

    Missing fields are reported before format failures, each group in field
    declaration order, so a payload lacking ``firstName`` with a malformed
    phone is rejected for the missing name.
    """

    if not isinstance(data, dict):
        return ValidationResult(errors=[FieldError(field="body", message="Invalid data format")])
    try:
        return ValidationResult(value=model.model_validate(data))
    except ValidationError as exc:
        missing: List[FieldError] = []
        malformed: List[FieldError] = []
        seen: set[str] = set()
        for error in exc.errors():
            name = str(error["loc"][0]) if error["loc"] else "body"
            if name in seen:
                continue
            seen.add(name)
            bucket = missing if _is_missing(error) else malformed
            bucket.append(FieldError(field=name, message=_error_message(name, error)))
        return ValidationResult(errors=missing + malformed)


class SubmissionResponse(BaseModel):
    """Successful submission envelope."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    lead_id: str = Field(serialization_alias="leadId")
    contact_id: str | None = Field(default=None, serialization_alias="contactId")
    timestamp: str | None = None


class PhoneValidationRequest(CamelModel):
    phone_number: str | None = None


class VerificationInfo(BaseModel):
    """Normalized phone lookup result."""

    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(serialization_alias="isValid")
    line_type: str | None = Field(default=None, serialization_alias="lineType")
    carrier: str | None = None
    international_format: str | None = Field(default=None, serialization_alias="internationalFormat")
    local_format: str | None = Field(default=None, serialization_alias="localFormat")
    country_code: str | None = Field(default=None, serialization_alias="countryCode")
    raw_response: dict[str, Any] = Field(default_factory=dict, serialization_alias="rawResponse")

    @property
    def is_valid_lead(self) -> bool:
        return self.is_valid and self.line_type in {"mobile", "landline"}

    def to_response(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True)
        payload["isValidLead"] = self.is_valid_lead
        return payload


class ErrorResponse(BaseModel):
    """Error envelope to keep errors consistent."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    details: Any | None = None
    retry_after: int | None = Field(default=None, serialization_alias="retryAfter")


class ClientConfig(BaseModel):
    """Public, non-secret settings the browser form needs."""

    google_maps_script_url: str | None = Field(default=None, serialization_alias="googleMapsScriptUrl")
    conversion_target: str | None = Field(default=None, serialization_alias="conversionTarget")
    environment: str = "development"
