"""
Remote gateway for the medical-record backend.
Every verb of every record kind is pet-scoped:
    /pets/{pet_id}/medical-records/{kind}[/{record_id}]
Responses are normalized through the kind's schema; any transport failure or
non-success status surfaces as RemoteError.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.config import settings
from ..core.errors import RemoteError
from ..models.records import MedicalRecord
from ..models.schemas import RecordSchema

logger = logging.getLogger(__name__)

_LIST_ENVELOPES = ("data", "items", "records")
_MESSAGE_KEYS = ("message", "detail", "error")


def _error_message(response: httpx.Response) -> str:
    """Pull the backend's own message out of an error response when it sent one."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in _MESSAGE_KEYS:
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    text = response.text.strip()
    return text or f"Medical-record service returned HTTP {response.status_code}"


def _unwrap_list(body: Any) -> List[Dict]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in _LIST_ENVELOPES:
            if isinstance(body.get(key), list):
                return body[key]
    raise RemoteError("Unexpected list response from medical-record service")


def _unwrap_item(body: Any) -> Dict:
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    if isinstance(body, dict):
        return body
    return {}


class MedicalRecordClient:
    """Async HTTP client for the pet-scoped medical-record endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.MEDICAL_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.MEDICAL_API_TOKEN
        self.timeout = timeout or settings.MEDICAL_API_TIMEOUT
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def record_path(pet_id: str, schema: RecordSchema, record_id: Optional[str] = None) -> str:
        path = f"/pets/{pet_id}/medical-records/{schema.kind.value}"
        if record_id is not None:
            path = f"{path}/{record_id}"
        return path

    async def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(method, path, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Medical-record service unreachable (%s %s): %s", method, path, exc)
            raise RemoteError(f"Medical-record service unreachable: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning("%s %s failed with HTTP %s: %s", method, path, response.status_code, message)
            raise RemoteError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError("Malformed response from medical-record service",
                              status_code=response.status_code) from exc

    def _normalize(self, schema: RecordSchema, payload: Dict) -> MedicalRecord:
        try:
            return schema.from_wire(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteError(f"Malformed {schema.kind.value} record from medical-record service") from exc

    @staticmethod
    def _merge_response(submitted: Dict, body: Any, record_id: Optional[str] = None) -> Dict:
        """Server fields win; anything the server left out falls back to what was submitted."""
        merged = dict(submitted)
        if record_id is not None:
            merged["id"] = record_id
        merged.update({k: v for k, v in _unwrap_item(body).items() if v is not None})
        return merged

    async def list_records(self, schema: RecordSchema, pet_id: str) -> List[MedicalRecord]:
        body = await self._request("GET", self.record_path(pet_id, schema))
        return [self._normalize(schema, item) for item in _unwrap_list(body or [])]

    async def create_record(self, schema: RecordSchema, pet_id: str, payload: Dict) -> MedicalRecord:
        body = await self._request("POST", self.record_path(pet_id, schema), payload)
        merged = self._merge_response(payload, body)
        if merged.get("id") is None:
            raise RemoteError(f"Medical-record service did not assign an id to the new {schema.kind.value} record")
        return self._normalize(schema, merged)

    async def update_record(self, schema: RecordSchema, pet_id: str, record_id: str,
                            payload: Dict) -> MedicalRecord:
        body = await self._request("PUT", self.record_path(pet_id, schema, record_id), payload)
        return self._normalize(schema, self._merge_response(payload, body, record_id))

    async def delete_record(self, schema: RecordSchema, pet_id: str, record_id: str) -> None:
        await self._request("DELETE", self.record_path(pet_id, schema, record_id))

    def gateway(self, schema: RecordSchema) -> "RecordGateway":
        return RecordGateway(self, schema)


class RecordGateway:
    """list/create/update/delete bound to one record kind."""

    def __init__(self, client: MedicalRecordClient, schema: RecordSchema):
        self.client = client
        self.schema = schema

    async def list(self, pet_id: str) -> List[MedicalRecord]:
        return await self.client.list_records(self.schema, pet_id)

    async def create(self, pet_id: str, payload: Dict) -> MedicalRecord:
        return await self.client.create_record(self.schema, pet_id, payload)

    async def update(self, pet_id: str, record_id: str, payload: Dict) -> MedicalRecord:
        return await self.client.update_record(self.schema, pet_id, record_id, payload)

    async def delete(self, pet_id: str, record_id: str) -> None:
        await self.client.delete_record(self.schema, pet_id, record_id)


medical_record_client = MedicalRecordClient()
