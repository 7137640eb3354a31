from datetime import datetime

import pytest

from petmed.core.errors import RemoteError


class FakeGateway:
    """In-memory stand-in for RecordGateway with switchable failures."""

    def __init__(self, schema, listed=None):
        self.schema = schema
        self.listed = list(listed or [])
        self.fail_list = False
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self.next_id = 100
        self.calls = []

    async def list(self, pet_id):
        self.calls.append(("list", pet_id))
        if self.fail_list:
            raise RemoteError("backend unavailable")
        return [self.schema.from_wire(payload) for payload in self.listed]

    async def create(self, pet_id, payload):
        self.calls.append(("create", pet_id, payload))
        if self.fail_create:
            raise RemoteError("backend unavailable")
        self.next_id += 1
        return self.schema.from_wire({**payload, "id": self.next_id})

    async def update(self, pet_id, record_id, payload):
        self.calls.append(("update", pet_id, record_id, payload))
        if self.fail_update:
            raise RemoteError("backend unavailable")
        return self.schema.from_wire({**payload, "id": record_id})

    async def delete(self, pet_id, record_id):
        self.calls.append(("delete", pet_id, record_id))
        if self.fail_delete:
            raise RemoteError("backend unavailable", status_code=503)


@pytest.fixture()
def fixed_now():
    return datetime(2024, 5, 5, 12, 0, 0)
