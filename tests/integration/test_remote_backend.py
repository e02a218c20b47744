"""
Integration tests for the remote entry backend.

Runs RemoteEntryBackend against the in-process proxy in fake_proxy.py
over httpx.MockTransport.

Tests cover:
- Request shapes (endpoint, auth header, database/collection)
- Error decoding for non-2xx and malformed replies
- Transport failures
- Serial allocation in SCAN and ATOMIC modes
"""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from credstore.allocator import AllocationMode
from credstore.backends import EntryBackend, RemoteEntryBackend
from credstore.errors import BackendConnectionError, BackendError, NotFoundError
from tests.conftest import make_draft


class TestRemoteWire:
    """Tests for the wire protocol."""

    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, remote_factory):
        assert isinstance(remote_factory(), EntryBackend)

    @pytest.mark.asyncio
    async def test_requires_connection(self, remote_factory):
        backend = remote_factory()

        with pytest.raises(BackendConnectionError):
            await backend.get_all()

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        async def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"documents": []})

        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1/",
            api_key="abc",
            database="db1",
            collection="creds",
            data_source="Cluster0",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await backend.connect()

        assert await backend.get_all() == []

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://proxy.test/v1/action/find"
        assert request.headers["Authorization"] == "Bearer abc"
        assert json.loads(request.content) == {
            "database": "db1",
            "collection": "creds",
            "dataSource": "Cluster0",
            "filter": {},
        }

    @pytest.mark.asyncio
    async def test_create_sends_wire_document(self, proxy, remote_factory):
        backend = remote_factory(allocation=AllocationMode.SCAN)
        await backend.connect()

        entry = await backend.create(make_draft(logo="https://logo.test/a.png"))

        assert proxy.actions() == ["aggregate", "insertOne"]
        stored = proxy.collections["entries"][0]
        assert stored["_id"] == entry.id
        assert stored["serialNumber"] == 1
        assert stored["password"] == "hunter2"
        assert stored["logo"] == "https://logo.test/a.png"
        assert stored["createdAt"] == stored["updatedAt"]

    @pytest.mark.asyncio
    async def test_get_by_id_uses_oid_filter(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        entry = await backend.create(make_draft())

        fetched = await backend.get_by_id(entry.id)

        assert fetched == entry
        action, body = proxy.requests[-1]
        assert action == "findOne"
        assert body["filter"] == {"_id": {"$oid": entry.id}}

    @pytest.mark.asyncio
    async def test_update_uses_set_and_rereads(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        entry = await backend.create(make_draft())

        updated = await backend.update(entry.id, {"website": "gitlab.com"})

        update_body = next(
            body
            for action, body in proxy.requests
            if action == "updateOne" and body["collection"] == "entries"
        )
        assert set(update_body["update"]["$set"]) == {"website", "updatedAt"}
        assert proxy.actions()[-1] == "findOne"
        assert updated.website == "gitlab.com"
        assert updated.serial_number == entry.serial_number
        assert updated.created_at == entry.created_at
        assert updated.updated_at > entry.updated_at

    @pytest.mark.asyncio
    async def test_unknown_id(self, remote_factory):
        backend = remote_factory()
        await backend.connect()

        with pytest.raises(NotFoundError):
            await backend.get_by_id("ffffffffffffffffffffffff")
        with pytest.raises(NotFoundError):
            await backend.update("ffffffffffffffffffffffff", {"name": "x"})
        with pytest.raises(NotFoundError):
            await backend.delete("ffffffffffffffffffffffff")

    @pytest.mark.asyncio
    async def test_check_username_escapes_regex(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        await backend.create(make_draft(username="a.b", website="www.example.com/login"))

        assert await backend.check_username("A.B", "Example.com")
        assert not await backend.check_username("axb", "example.com")

        _, body = proxy.requests[-1]
        assert body["filter"]["username"] == {"$regex": "^axb$", "$options": "i"}

    @pytest.mark.asyncio
    async def test_inserted_id_as_oid(self):
        async def handler(request):
            if request.url.path.endswith("insertOne"):
                return httpx.Response(200, json={"insertedId": {"$oid": "65f0c0ffee"}})
            return httpx.Response(200, json={"documents": []})

        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1",
            allocation=AllocationMode.SCAN,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await backend.connect()

        entry = await backend.create(make_draft())

        assert entry.id == "65f0c0ffee"
        assert entry.serial_number == 1


class TestRemoteErrors:
    """Tests for error decoding."""

    @pytest.mark.asyncio
    async def test_error_body_message(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        proxy.fail_next("find", 500, {"error": "cluster paused"})

        with pytest.raises(BackendError) as exc_info:
            await backend.get_all()

        assert exc_info.value.message == "cluster paused"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_reason_phrase_without_body(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        proxy.fail_next("find", 503)

        with pytest.raises(BackendError) as exc_info:
            await backend.get_all()

        assert exc_info.value.message == "Service Unavailable"

    @pytest.mark.asyncio
    async def test_bad_api_key(self, proxy):
        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1",
            api_key="wrong",
            client=proxy.client(),
        )
        await backend.connect()

        with pytest.raises(BackendError) as exc_info:
            await backend.get_all()

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid API key"

    @pytest.mark.asyncio
    async def test_non_json_reply(self):
        async def handler(request):
            return httpx.Response(200, text="<html>")

        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await backend.connect()

        with pytest.raises(BackendError, match="Invalid JSON"):
            await backend.get_all()

    @pytest.mark.asyncio
    async def test_malformed_document(self):
        async def handler(request):
            return httpx.Response(200, json={"documents": [{"_id": "x", "name": "only"}]})

        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await backend.connect()

        with pytest.raises(BackendError, match="Malformed entry document"):
            await backend.get_all()

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        async def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await backend.connect()

        with pytest.raises(BackendConnectionError) as exc_info:
            await backend.get_all()

        assert exc_info.value.address == "https://proxy.test/v1"

    @pytest.mark.asyncio
    async def test_injected_client_survives_close(self, proxy):
        client = proxy.client()
        backend = RemoteEntryBackend(base_url="https://proxy.test/v1", client=client)
        await backend.connect()

        await backend.close()

        assert not backend.is_connected
        assert not client.is_closed
        await client.aclose()


class TestRemoteSerials:
    """Serial allocation against the proxy."""

    @pytest.mark.asyncio
    async def test_sequential_atomic(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()

        serials = [(await backend.create(make_draft())).serial_number for _ in range(3)]

        assert serials == [1, 2, 3]
        assert proxy.collections["counters"] == [{"_id": "entries.serialNumber", "value": 3}]

    @pytest.mark.asyncio
    async def test_atomic_counter_seeded_from_existing(self, proxy, remote_factory):
        scan = remote_factory(allocation=AllocationMode.SCAN)
        await scan.connect()
        for _ in range(2):
            await scan.create(make_draft())

        atomic = remote_factory()
        await atomic.connect()
        entry = await atomic.create(make_draft())

        assert entry.serial_number == 3

    @pytest.mark.asyncio
    async def test_atomic_concurrent_creates_distinct(self, remote_factory):
        backend = remote_factory()
        await backend.connect()

        entries = await asyncio.gather(*(backend.create(make_draft()) for _ in range(5)))

        assert sorted(e.serial_number for e in entries) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_scan_concurrent_creates_duplicate(self, remote_factory):
        backend = remote_factory(allocation=AllocationMode.SCAN)
        await backend.connect()

        first, second = await asyncio.gather(
            backend.create(make_draft(name="A")),
            backend.create(make_draft(name="B")),
        )

        assert first.serial_number == second.serial_number == 1
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_atomic_gives_up(self, proxy, remote_factory):
        backend = remote_factory(allocation_retries=2)
        await backend.connect()
        proxy.collections["counters"].append({"_id": "entries.serialNumber", "value": 0})

        # Every compare-and-swap reports no modification
        original = proxy._update

        def never_modify(docs, filter_, fields):
            if filter_.get("_id") == "entries.serialNumber":
                return httpx.Response(200, json={"matchedCount": 0, "modifiedCount": 0})
            return original(docs, filter_, fields)

        proxy._update = never_modify

        with pytest.raises(BackendError, match="after 2 attempts"):
            await backend.create(make_draft())
        assert proxy.collections["entries"] == []

    @pytest.mark.asyncio
    async def test_delete_does_not_renumber(self, remote_factory):
        backend = remote_factory()
        await backend.connect()
        created = [await backend.create(make_draft()) for _ in range(3)]

        await backend.delete(created[1].id)

        assert sorted(e.serial_number for e in await backend.get_all()) == [1, 3]


class TestRemoteDecoding:
    """Stored timestamps and serial values the backend has to cope with."""

    @pytest.mark.asyncio
    async def test_update_stamps_after_stored_timestamp(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        entry = await backend.create(make_draft())
        # Stored clock ahead of ours
        future = "2999-01-01T00:00:00+00:00"
        proxy.collections["entries"][0]["updatedAt"] = future

        updated = await backend.update(entry.id, {"name": "GitHub 2"})

        assert updated.updated_at > datetime(2999, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_counter_extended_json_value(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        proxy.collections["counters"].append(
            {"_id": "entries.serialNumber", "value": {"$numberInt": "4"}}
        )

        # Compare-and-swap filters on plain ints; unwrap before matching
        original = proxy._update

        def unwrap(docs, filter_, fields):
            for doc in docs:
                if isinstance(doc.get("value"), dict):
                    doc["value"] = int(doc["value"]["$numberInt"])
            return original(docs, filter_, fields)

        proxy._update = unwrap

        entry = await backend.create(make_draft())

        assert entry.serial_number == 5

    @pytest.mark.asyncio
    async def test_counter_without_value(self, proxy, remote_factory):
        backend = remote_factory()
        await backend.connect()
        proxy.collections["counters"].append({"_id": "entries.serialNumber"})

        with pytest.raises(BackendError, match="Malformed serial counter"):
            await backend.create(make_draft())

    @pytest.mark.asyncio
    async def test_max_serial_extended_json(self):
        async def handler(request):
            if request.url.path.endswith("aggregate"):
                return httpx.Response(
                    200, json={"documents": [{"_id": None, "maxSerial": {"$numberLong": "7"}}]}
                )
            return httpx.Response(200, json={"insertedId": "abc"})

        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1",
            allocation=AllocationMode.SCAN,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await backend.connect()

        entry = await backend.create(make_draft())

        assert entry.serial_number == 8

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_serial", ["seven", 2.5, [3], {"$oid": "x"}])
    async def test_max_serial_malformed(self, max_serial):
        async def handler(request):
            return httpx.Response(
                200, json={"documents": [{"_id": None, "maxSerial": max_serial}]}
            )

        backend = RemoteEntryBackend(
            base_url="https://proxy.test/v1",
            allocation=AllocationMode.SCAN,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await backend.connect()

        with pytest.raises(BackendError, match="Malformed serial maximum"):
            await backend.create(make_draft())
