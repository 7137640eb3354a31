import asyncio
import json

import httpx
import pytest

from petmed.core.errors import RemoteError
from petmed.models.records import RecordKind
from petmed.models.schemas import SCHEMAS
from petmed.services.medical_record_client import MedicalRecordClient


def make_client(handler, api_key="test-token"):
    return MedicalRecordClient(
        base_url="https://records.example.com/api",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


class Recorder:
    """MockTransport handler that remembers requests and replies with a fixed response."""

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.body is None:
            return httpx.Response(self.status_code)
        return httpx.Response(self.status_code, json=self.body)


WIRE_PAYLOADS = {
    RecordKind.VACCINATIONS: {"vaccineName": "Rabies", "vaccinationDate": "2024-05-01", "veterinarian": "Dr. A"},
    RecordKind.APPOINTMENTS: {"appointmentDate": "2024-05-10T09:00:00", "reason": "Checkup",
                              "veterinarian": "Dr. B", "notes": ""},
    RecordKind.TREATMENTS: {"treatmentType": "Deworming", "description": "Oral tablet",
                            "treatmentDate": "2024-05-02T10:30:00", "veterinarian": "Dr. C"},
    RecordKind.MEDICATIONS: {"medicationName": "Amoxicillin", "dosage": "50mg", "frequency": "Twice daily",
                             "startDate": "2024-05-01", "endDate": None, "prescribedBy": "Dr. D", "notes": ""},
    RecordKind.WEIGHT_RECORDS: {"weight": 5.2, "unit": "KG", "recordDate": "2024-05-01", "notes": ""},
    RecordKind.ALLERGIES: {"allergen": "Chicken", "reaction": "Itching", "severity": "Mild", "notes": ""},
}


@pytest.mark.parametrize("kind", list(RecordKind))
def test_every_verb_is_pet_scoped(kind):
    """List, create, update and delete all address /pets/{pet}/medical-records/{kind}."""
    schema = SCHEMAS[kind]
    recorder = Recorder()
    client = make_client(recorder)
    gateway = client.gateway(schema)
    payload = WIRE_PAYLOADS[kind]

    async def run():
        recorder.body = []
        await gateway.list("pet-1")
        recorder.body = {"id": 9}
        created = await gateway.create("pet-1", payload)
        updated = await gateway.update("pet-1", "9", payload)
        recorder.body = None
        await gateway.delete("pet-1", "9")
        return created, updated

    created, updated = asyncio.run(run())
    base = f"/api/pets/pet-1/medical-records/{kind.value}"
    assert [(r.method, r.url.path) for r in recorder.requests] == [
        ("GET", base),
        ("POST", base),
        ("PUT", f"{base}/9"),
        ("DELETE", f"{base}/9"),
    ]
    assert created.id == "9"
    assert updated.id == "9"


def test_create_and_update_paths_and_bodies():
    schema = SCHEMAS[RecordKind.ALLERGIES]
    payload = {"allergen": "Chicken", "reaction": "Itching", "severity": "Mild", "notes": ""}
    recorder = Recorder(body={"id": 5})
    client = make_client(recorder)

    created = asyncio.run(client.create_record(schema, "pet-1", payload))
    updated = asyncio.run(client.update_record(schema, "pet-1", "5", payload))

    first, second = recorder.requests
    assert (first.method, first.url.path) == ("POST", "/api/pets/pet-1/medical-records/allergies")
    assert (second.method, second.url.path) == ("PUT", "/api/pets/pet-1/medical-records/allergies/5")
    assert json.loads(first.content) == payload
    assert created.id == "5"
    assert updated.allergen == "Chicken"


def test_bearer_token_sent():
    recorder = Recorder(body=[])
    asyncio.run(make_client(recorder).list_records(SCHEMAS[RecordKind.VACCINATIONS], "pet-1"))
    assert recorder.requests[0].headers["Authorization"] == "Bearer test-token"


def test_no_token_no_auth_header():
    recorder = Recorder(body=[])
    asyncio.run(make_client(recorder, api_key="").list_records(SCHEMAS[RecordKind.VACCINATIONS], "pet-1"))
    assert "Authorization" not in recorder.requests[0].headers


def test_list_normalizes_records():
    recorder = Recorder(body=[
        {"id": 1, "weight": 5.0, "unit": "KG", "recordDate": "2024-01-01"},
        {"id": 2, "weight": 12.0, "unit": "LB", "recordDate": "2024-02-01T00:00:00"},
    ])
    records = asyncio.run(make_client(recorder).list_records(SCHEMAS[RecordKind.WEIGHT_RECORDS], "pet-1"))
    assert [(r.id, r.unit, r.date) for r in records] == [("1", "kg", "2024-01-01"), ("2", "lb", "2024-02-01")]


@pytest.mark.parametrize("envelope", ["data", "items", "records"])
def test_list_unwraps_envelopes(envelope):
    recorder = Recorder(body={envelope: [{"id": 1, "allergen": "Pollen"}]})
    records = asyncio.run(make_client(recorder).list_records(SCHEMAS[RecordKind.ALLERGIES], "pet-1"))
    assert [r.allergen for r in records] == ["Pollen"]


def test_update_falls_back_to_submitted_fields():
    """A bare acknowledgement still yields the record as submitted."""
    schema = SCHEMAS[RecordKind.VACCINATIONS]
    payload = {"vaccineName": "Rabies", "vaccinationDate": "2024-05-01", "veterinarian": "Dr. A"}
    recorder = Recorder(body={"data": {"veterinarian": "Dr. B"}})
    record = asyncio.run(make_client(recorder).update_record(schema, "pet-1", "3", payload))
    assert record.id == "3"
    assert record.name == "Rabies"
    assert record.veterinarian == "Dr. B"


def test_empty_update_response():
    schema = SCHEMAS[RecordKind.ALLERGIES]
    payload = {"allergen": "Dust", "reaction": "Sneezing", "severity": "Mild", "notes": ""}
    record = asyncio.run(make_client(Recorder(status_code=204)).update_record(schema, "pet-1", "8", payload))
    assert record.id == "8"
    assert record.allergen == "Dust"


def test_create_without_id_is_an_error():
    schema = SCHEMAS[RecordKind.ALLERGIES]
    with pytest.raises(RemoteError, match="did not assign an id"):
        asyncio.run(make_client(Recorder(body={})).create_record(schema, "pet-1", {"allergen": "Dust"}))


def test_error_status_carries_backend_message():
    recorder = Recorder(status_code=400, body={"message": "Pet not found"})
    with pytest.raises(RemoteError) as excinfo:
        asyncio.run(make_client(recorder).list_records(SCHEMAS[RecordKind.VACCINATIONS], "pet-1"))
    assert excinfo.value.message == "Pet not found"
    assert excinfo.value.status_code == 400


def test_error_without_body_gets_generic_message():
    with pytest.raises(RemoteError, match="HTTP 503"):
        asyncio.run(make_client(Recorder(status_code=503)).delete_record(
            SCHEMAS[RecordKind.VACCINATIONS], "pet-1", "1"))


def test_transport_failure_becomes_remote_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteError, match="unreachable"):
        asyncio.run(make_client(handler).list_records(SCHEMAS[RecordKind.VACCINATIONS], "pet-1"))


def test_malformed_record_becomes_remote_error():
    recorder = Recorder(body=[{"id": 1, "weight": "heavy"}])
    with pytest.raises(RemoteError, match="Malformed"):
        asyncio.run(make_client(recorder).list_records(SCHEMAS[RecordKind.WEIGHT_RECORDS], "pet-1"))
