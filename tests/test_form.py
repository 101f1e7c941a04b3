import asyncio
import logging

import pytest

from lead_capture.client import ApiError
from lead_capture.form import (
    LEAD_NOT_STARTED,
    PHONE_API_INVALID,
    PHONE_API_NOT_PERSONAL,
    PHONE_API_UNREACHABLE,
    PHONE_FORMAT_INVALID,
    AddressSelection,
    DetailsForm,
    DetailsStep,
    FormSession,
    FormStateError,
    FormStep,
    PhoneCheck,
    PropertyDetails,
    PropertyForm,
)

MAIN_ST = AddressSelection(
    formatted_address="123 Main St, Springfield, IL 62701, USA",
    place_id="ChIJ123",
    street_address="123 Main St",
    city="Springfield",
    state="IL",
    postal_code="62701",
)


@pytest.fixture
def navigations():
    return []


@pytest.fixture
def form(lead_api, analytics, navigations) -> PropertyForm:
    return PropertyForm(
        lead_api,
        analytics=analytics,
        navigate=navigations.append,
        conversion_target="AW-1/abc",
    )


def _fill(form: PropertyForm, phone: str = "5551234567", consent: bool = True) -> None:
    form.select_address(MAIN_ST)
    form.change_phone(phone)
    form.set_consent(consent)


async def _until(predicate) -> None:
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def test_starts_on_the_address_step(form) -> None:
    assert form.state is FormStep.ADDRESS
    assert not form.can_submit
    with pytest.raises(FormStateError):
        form.change_phone("555")


@pytest.mark.asyncio
async def test_blurring_an_empty_address_does_not_advance(form) -> None:
    assert await form.blur("address") is False

    assert form.state is FormStep.ADDRESS
    assert form.errors.address == "Please enter a valid property address"


def test_selecting_an_address_advances_and_tracks(form, analytics) -> None:
    form.select_address(MAIN_ST)

    assert form.state is FormStep.PHONE_CONSENT
    assert form.draft.address == MAIN_ST.formatted_address
    assert form.draft.postal_code == "62701"
    assert "address" in form.touched
    assert analytics.events == [
        ("property_address_selected", {"address": MAIN_ST.formatted_address, "placeId": "ChIJ123"})
    ]


@pytest.mark.asyncio
async def test_phone_is_formatted_live_and_rechecked_once_touched(form) -> None:
    form.select_address(MAIN_ST)

    assert form.change_phone("555") == "555"
    assert form.errors.phone is None

    await form.blur("phone")
    assert form.errors.phone == PHONE_FORMAT_INVALID

    assert form.change_phone("5551234") == "(555) 123-4"
    assert form.errors.phone == PHONE_FORMAT_INVALID

    assert form.change_phone("5551234567") == "(555) 123-4567"
    assert form.errors.phone is None


@pytest.mark.asyncio
async def test_blur_verifies_phone_once_until_it_changes(form, lead_api) -> None:
    _fill(form)

    assert await form.blur("phone") is True
    assert await form.blur("phone") is True
    assert lead_api.validate_calls == ["5551234567"]
    assert form.phone_check is PhoneCheck.VERIFIED
    assert form.draft.carrier == "Verizon Wireless"
    assert form.draft.phone_line_type == "mobile"

    form.change_phone("5551234568")

    assert form.phone_check is PhoneCheck.UNCHECKED
    assert form.draft.carrier is None
    assert form.draft.phone_line_type is None
    await form.blur("phone")
    assert lead_api.validate_calls == ["5551234567", "5551234568"]


@pytest.mark.asyncio
async def test_invalid_format_never_calls_verification(form, lead_api) -> None:
    _fill(form, phone="55512")

    assert await form.blur("phone") is False
    assert await form.submit() is False
    assert lead_api.validate_calls == []
    assert lead_api.partial_calls == []


@pytest.mark.asyncio
async def test_non_personal_number_blocks_submission(form, lead_api) -> None:
    lead_api.verification = {"isValid": True, "isValidLead": False, "lineType": "voip"}
    _fill(form)

    await form.blur("phone")

    assert form.errors.phone_api == PHONE_API_NOT_PERSONAL
    assert form.phone_check is PhoneCheck.REJECTED
    assert not form.can_submit


@pytest.mark.asyncio
async def test_invalid_number_message(form, lead_api) -> None:
    lead_api.verification = {"isValid": False, "isValidLead": False}
    _fill(form)

    await form.blur("phone")

    assert form.errors.phone_api == PHONE_API_INVALID


@pytest.mark.asyncio
async def test_unreachable_verification_is_an_error_not_a_pass(form, lead_api) -> None:
    lead_api.verification_error = ApiError("Could not reach /api/validate-phone")
    _fill(form)

    assert await form.submit() is False

    assert form.errors.phone_api == PHONE_API_UNREACHABLE
    assert form.state is FormStep.FAILED
    assert lead_api.partial_calls == []


@pytest.mark.asyncio
async def test_verification_service_error_message_is_shown(form, lead_api) -> None:
    lead_api.verification_error = ApiError("Invalid country code for the phone number.", status_code=400)
    _fill(form)

    await form.blur("phone")

    assert form.errors.phone_api == "Invalid country code for the phone number."


@pytest.mark.asyncio
async def test_consent_is_required(form, lead_api) -> None:
    _fill(form, consent=False)

    assert not form.can_submit
    assert await form.submit() is False
    assert form.errors.consent == "You must consent to be contacted"
    assert lead_api.partial_calls == []


@pytest.mark.asyncio
async def test_successful_submit_stores_lead_id_and_navigates(form, lead_api, analytics, navigations) -> None:
    _fill(form)
    assert form.can_submit

    assert await form.submit() is True

    assert form.state is FormStep.SUBMITTED
    assert form.session.lead_id == "lead_1700000000000_abc123xyz"
    assert navigations == ["/property-listed"]
    assert analytics.conversions == [("AW-1/abc", {"leadId": "lead_1700000000000_abc123xyz"})]
    assert analytics.events[-1][0] == "form_submitted"
    sent = lead_api.partial_calls[0]
    assert sent["address"] == MAIN_ST.formatted_address
    assert sent["phone"] == "(555) 123-4567"
    assert sent["consent"] is True
    assert sent["placeId"] == "ChIJ123"
    assert sent["carrier"] == "Verizon Wireless"
    assert "lastUpdated" in sent

    assert await form.submit() is False
    assert len(lead_api.partial_calls) == 1
    assert len(analytics.conversions) == 1


@pytest.mark.asyncio
async def test_submit_skips_verification_when_already_fresh(form, lead_api) -> None:
    _fill(form)
    await form.blur("phone")

    await form.submit()

    assert lead_api.validate_calls == ["5551234567"]


@pytest.mark.asyncio
async def test_submit_forces_verification_when_not_fresh(form, lead_api) -> None:
    _fill(form)

    await form.submit()

    assert lead_api.validate_calls == ["5551234567"]
    assert len(lead_api.partial_calls) == 1


@pytest.mark.asyncio
async def test_second_submit_while_in_flight_is_a_no_op(form, lead_api) -> None:
    lead_api.gate = asyncio.Event()
    _fill(form)

    first = asyncio.create_task(form.submit())
    await _until(lambda: form.is_validating)

    assert form.is_submitting
    assert not form.can_submit
    assert await form.submit() is False

    lead_api.gate.set()
    assert await first is True
    assert len(lead_api.partial_calls) == 1


@pytest.mark.asyncio
async def test_submission_failure_keeps_entered_data(form, lead_api) -> None:
    lead_api.submission_error = ApiError("Too many requests", status_code=429)
    _fill(form)

    assert await form.submit() is False

    assert form.state is FormStep.FAILED
    assert form.errors.submit == "Too many requests"
    assert form.draft.phone == "(555) 123-4567"
    assert form.session.lead_id is None

    form.change_phone("5551234567")
    assert form.state is FormStep.PHONE_CONSENT


@pytest.mark.asyncio
async def test_unsuccessful_response_body_is_a_failure(form, lead_api) -> None:
    lead_api.submission = {"success": False, "error": "Failed to save lead data"}
    _fill(form)

    assert await form.submit() is False
    assert form.errors.submit == "Failed to save lead data"


@pytest.mark.asyncio
async def test_rejected_verification_on_submit_sets_phone_api_error(form, lead_api) -> None:
    lead_api.verification = {"isValid": True, "isValidLead": False, "lineType": "voip"}
    _fill(form)

    assert await form.submit() is False

    assert form.errors.phone_api == PHONE_API_NOT_PERSONAL
    assert lead_api.partial_calls == []


@pytest.mark.asyncio
async def test_late_verification_after_dispose_is_ignored(form, lead_api) -> None:
    lead_api.gate = asyncio.Event()
    _fill(form)

    pending = asyncio.create_task(form.blur("phone"))
    await _until(lambda: lead_api.validate_calls)
    form.dispose()
    lead_api.gate.set()

    assert await pending is False
    assert form.draft.carrier is None
    assert form.errors.phone_api is None


@pytest.mark.asyncio
async def test_verification_for_an_outdated_number_is_ignored(form, lead_api) -> None:
    lead_api.gate = asyncio.Event()
    lead_api.verification = {"isValid": True, "isValidLead": False, "lineType": "voip"}
    _fill(form)

    pending = asyncio.create_task(form.blur("phone"))
    await _until(lambda: lead_api.validate_calls)
    form.change_phone("5559876543")
    lead_api.gate.set()

    assert await pending is False
    assert form.errors.phone_api is None
    assert form.phone_check is PhoneCheck.UNCHECKED


def test_lead_id_cannot_be_reassigned() -> None:
    session = FormSession()
    session.assign_lead_id("lead_1_aaaaaaaaa")
    session.assign_lead_id("lead_1_aaaaaaaaa")

    with pytest.raises(FormStateError):
        session.assign_lead_id("lead_2_bbbbbbbbb")


@pytest.mark.asyncio
async def test_details_form_waits_for_a_lead_id(lead_api) -> None:
    details = DetailsForm(lead_api, FormSession())

    assert await details.submit(PropertyDetails(first_name="Jane")) is False

    assert details.error == LEAD_NOT_STARTED
    assert details.state is DetailsStep.FAILED
    assert lead_api.complete_calls == []


@pytest.mark.asyncio
async def test_details_form_sends_complete_lead_with_same_id(form, lead_api, navigations) -> None:
    _fill(form)
    await form.submit()

    details = DetailsForm(lead_api, form.session, navigate=navigations.append)
    submitted = await details.submit(
        PropertyDetails(
            first_name="Jane",
            last_name="Doe",
            email="jane.doe@sellmyhouse.com",
            property_condition="Needs work",
            timeframe="ASAP",
            price="250000",
            is_property_listed=False,
        )
    )

    assert submitted is True
    sent = lead_api.complete_calls[0]
    assert sent["leadId"] == "lead_1700000000000_abc123xyz"
    assert sent["firstName"] == "Jane"
    assert sent["isPropertyListed"] is False
    assert sent["address"] == MAIN_ST.formatted_address
    assert navigations == ["/property-listed", "/thank-you"]
    assert details.state is DetailsStep.SUBMITTED
    assert sent["timestamp"] == "2023-11-14T22:13:20+00:00"


@pytest.mark.asyncio
async def test_first_seen_timestamp_is_kept_from_the_partial_response(form, lead_api) -> None:
    _fill(form)
    await form.submit()

    assert form.draft.timestamp == "2023-11-14T22:13:20+00:00"

    form.session.assign_lead_id("lead_1700000000000_abc123xyz", "2024-01-01T00:00:00+00:00")
    assert form.draft.timestamp == "2023-11-14T22:13:20+00:00"


@pytest.mark.asyncio
async def test_input_during_submission_is_ignored(form, lead_api) -> None:
    lead_api.gate = asyncio.Event()
    _fill(form)

    pending = asyncio.create_task(form.submit())
    await _until(lambda: form.is_submitting and lead_api.validate_calls)

    form.set_consent(False)
    assert form.change_phone("5559876543") == "(555) 123-4567"
    assert await form.blur("consent") is False
    form.select_address(AddressSelection(formatted_address="9 Elm St"))

    lead_api.gate.set()
    assert await pending is True
    sent = lead_api.partial_calls[0]
    assert sent["consent"] is True
    assert sent["phone"] == "(555) 123-4567"
    assert sent["address"] == MAIN_ST.formatted_address


@pytest.mark.asyncio
async def test_events_are_logged_when_no_sink_is_given(lead_api, caplog) -> None:
    caplog.set_level(logging.INFO, logger="lead_capture.analytics")
    form = PropertyForm(lead_api, conversion_target="AW-1/abc")
    _fill(form)

    await form.submit()

    conversions = [record for record in caplog.records if record.getMessage() == "Conversion tracked"]
    assert len(conversions) == 1
    assert conversions[0].conversion_target == "AW-1/abc"
    assert conversions[0].params == {"leadId": "lead_1700000000000_abc123xyz"}
    events = [record.event for record in caplog.records if record.getMessage() == "Analytics event"]
    assert events == ["property_address_selected", "form_submitted"]
