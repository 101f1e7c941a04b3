import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from lead_capture.client import ApiError
from lead_capture.config import Settings
from lead_capture.crm import GoHighLevelClient
from lead_capture.main import app, get_crm_client, get_phone_verifier
from lead_capture.phone_verification import NumverifyClient

MOBILE_LOOKUP = {
    "valid": True,
    "number": "15551234567",
    "local_format": "5551234567",
    "international_format": "+15551234567",
    "country_prefix": "+1",
    "country_code": "US",
    "country_name": "United States of America",
    "location": "Springfield",
    "carrier": "Verizon Wireless",
    "line_type": "mobile",
}


class FakeCrm:
    """In-memory stand-in for the GoHighLevel contacts API."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.fail_status: Optional[int] = None
        self.lookup_status = 200

    @property
    def writes(self) -> List[httpx.Request]:
        return [request for request in self.requests if request.method in ("POST", "PUT")]

    def add_contact(self, contact_id: str, **fields: Any) -> None:
        self.contacts[contact_id] = {"id": contact_id, **fields}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if self.fail_status:
            return httpx.Response(self.fail_status, text="upstream exploded")

        if request.method == "GET" and path.endswith("/contacts/lookup"):
            if self.lookup_status != 200:
                return httpx.Response(self.lookup_status, json={"msg": "lookup failed"})
            phone = request.url.params["lookupValue"]
            matches = [contact for contact in self.contacts.values() if contact.get("phone") == phone]
            return httpx.Response(200, json={"contacts": matches})

        if request.method == "POST" and path.endswith("/contacts/"):
            contact_id = f"contact-{len(self.contacts) + 1}"
            self.contacts[contact_id] = {**json.loads(request.content), "id": contact_id}
            return httpx.Response(200, json={"contact": self.contacts[contact_id]})

        contact_id = path.rsplit("/", 1)[-1]
        if contact_id not in self.contacts:
            return httpx.Response(404, json={"msg": "not found"})
        if request.method == "GET":
            return httpx.Response(200, json={"contact": self.contacts[contact_id]})
        if request.method == "PUT":
            self.contacts[contact_id] = {**json.loads(request.content), "id": contact_id}
            return httpx.Response(200, json={"contact": self.contacts[contact_id]})
        return httpx.Response(405)


class FakeNumverify:
    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.payload: Dict[str, Any] = dict(MOBILE_LOOKUP)
        self.status = 200
        self.raise_connect_error = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_connect_error:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status, json=self.payload)


class RecordingAnalytics:
    def __init__(self) -> None:
        self.events: List[tuple] = []
        self.conversions: List[tuple] = []

    def track_event(self, name, params) -> None:
        self.events.append((name, dict(params)))

    def track_conversion(self, target, params) -> None:
        self.conversions.append((target, dict(params)))


class FakeLeadApi:
    """Scriptable LeadApi for driving the form controllers without HTTP."""

    def __init__(self) -> None:
        self.verification: Dict[str, Any] = {
            "isValid": True,
            "isValidLead": True,
            "lineType": "mobile",
            "carrier": "Verizon Wireless",
        }
        self.submission: Dict[str, Any] = {
            "success": True,
            "leadId": "lead_1700000000000_abc123xyz",
            "contactId": "contact-1",
            "timestamp": "2023-11-14T22:13:20+00:00",
        }
        self.verification_error: Optional[ApiError] = None
        self.submission_error: Optional[ApiError] = None
        self.gate: Optional[asyncio.Event] = None
        self.validate_calls: List[str] = []
        self.partial_calls: List[Dict[str, Any]] = []
        self.complete_calls: List[Dict[str, Any]] = []

    async def validate_phone(self, digits: str) -> Dict[str, Any]:
        self.validate_calls.append(digits)
        if self.gate is not None:
            await self.gate.wait()
        if self.verification_error is not None:
            raise self.verification_error
        return dict(self.verification)

    async def submit_partial(self, lead: Dict[str, Any]) -> Dict[str, Any]:
        self.partial_calls.append(lead)
        if self.submission_error is not None:
            raise self.submission_error
        return dict(self.submission)

    async def submit_complete(self, lead: Dict[str, Any]) -> Dict[str, Any]:
        self.complete_calls.append(lead)
        if self.submission_error is not None:
            raise self.submission_error
        return {"success": True, "leadId": lead.get("leadId"), "contactId": "contact-1"}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        crm_api_key="crm-key",
        crm_location_id="loc-1",
        numverify_api_key="nv-key",
    )


@pytest.fixture
def crm() -> FakeCrm:
    return FakeCrm()


@pytest.fixture
def numverify() -> FakeNumverify:
    return FakeNumverify()


@pytest.fixture
def crm_client(settings, crm) -> GoHighLevelClient:
    return GoHighLevelClient(settings, transport=httpx.MockTransport(crm.handler))


@pytest.fixture
def verifier(settings, numverify) -> NumverifyClient:
    return NumverifyClient(settings, transport=httpx.MockTransport(numverify.handler))


@pytest.fixture
def api_app(settings, crm, numverify):
    app.dependency_overrides[get_crm_client] = lambda: GoHighLevelClient(
        settings, transport=httpx.MockTransport(crm.handler)
    )
    app.dependency_overrides[get_phone_verifier] = lambda: NumverifyClient(
        settings, transport=httpx.MockTransport(numverify.handler)
    )
    app.state.submission_limiter.reset()
    app.state.limiter.reset()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_app) -> TestClient:
    return TestClient(api_app)


@pytest.fixture
def analytics() -> RecordingAnalytics:
    return RecordingAnalytics()


@pytest.fixture
def lead_api() -> FakeLeadApi:
    return FakeLeadApi()
