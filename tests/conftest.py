"""Shared fixtures for credstore tests."""

import pytest

from credstore import AllocationMode, EntryDraft, EntryStore
from credstore.backends import InMemoryEntryBackend, RemoteEntryBackend
from tests.fake_proxy import FakeDocumentStore


def make_draft(**overrides) -> EntryDraft:
    """Helper to build a valid draft."""
    fields = {
        "name": "GitHub",
        "username": "bob",
        "password": "hunter2",
        "website": "github.com",
    }
    fields.update(overrides)
    return EntryDraft(**fields)


@pytest.fixture
def draft_factory():
    return make_draft


@pytest.fixture
def proxy():
    """Fresh fake document-store proxy."""
    return FakeDocumentStore()


def make_remote_backend(proxy: FakeDocumentStore, **kwargs) -> RemoteEntryBackend:
    kwargs.setdefault("allocation_retries", 10)
    return RemoteEntryBackend(
        base_url="https://proxy.test/endpoint/data/v1",
        api_key=proxy.api_key,
        database="testdb",
        collection="entries",
        client=proxy.client(),
        **kwargs,
    )


@pytest.fixture
def remote_factory(proxy):
    """Build remote backends bound to the fake proxy."""

    def factory(**kwargs) -> RemoteEntryBackend:
        return make_remote_backend(proxy, **kwargs)

    return factory


@pytest.fixture(params=["memory", "remote"])
def store(request, proxy):
    """Unconnected EntryStore over each backend variant."""
    if request.param == "memory":
        backend = InMemoryEntryBackend(allocation=AllocationMode.ATOMIC)
    else:
        backend = make_remote_backend(proxy)
    return EntryStore(backend)
