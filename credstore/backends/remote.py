"""
Remote entry backend for a document-store HTTP proxy.

This module talks to a proxy that exposes collection actions over
HTTP (``POST {base_url}/action/<name>`` with a JSON body and a bearer
token), in the shape of the MongoDB Data API:

    find       {filter}                 -> {documents}
    findOne    {filter}                 -> {document}
    aggregate  {pipeline}               -> {documents}
    insertOne  {document}               -> {insertedId}
    updateOne  {filter, update:{$set}}  -> {matchedCount, modifiedCount}
    deleteOne  {filter}                 -> {deletedCount}

Invariants:
    - Every request names database and collection (and dataSource if set)
    - Non-2xx responses surface the proxy's {"error"} message when present
    - update() returns the document as re-read from the store
    - update() stamps updatedAt strictly after the stored value
    - Serial counters and maxima that are not whole numbers raise BackendError
    - Transport failures never leave partial client-side state

How to change safely:
    - Keep the wire shapes above stable; other dashboards share the data
    - Serial counters live in their own collection, keyed by collection name
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional
import logging

import httpx

from ..allocator import AllocationMode, next_serial
from ..entry import Entry, EntryDraft, format_timestamp, utc_now
from ..errors import BackendConnectionError, BackendError, NotFoundError

logger = logging.getLogger(__name__)

MAX_SERIAL_PIPELINE = [
    {"$group": {"_id": None, "maxSerial": {"$max": "$serialNumber"}}},
]


def _id_filter(entry_id: str) -> Dict[str, Any]:
    return {"_id": {"$oid": entry_id}}


def _decode_serial(value: Any, what: str) -> int:
    """Integer from a stored serial, unwrapping extended-JSON numbers.

    Raises:
        BackendError: If the value is missing or not a whole number
    """
    raw = value
    if isinstance(value, dict) and len(value) == 1:
        key, inner = next(iter(value.items()))
        if key in ("$numberInt", "$numberLong", "$numberDouble"):
            value = inner
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise BackendError(f"Malformed {what}: {raw!r}")
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except ValueError:
        raise BackendError(f"Malformed {what}: {raw!r}")
    if not number.is_integer():
        raise BackendError(f"Malformed {what}: {raw!r}")
    return int(number)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase or "An error occurred"


class RemoteEntryBackend:
    """Document-store proxy implementation of EntryBackend.

    Attributes:
        base_url: Proxy endpoint, without the ``/action/...`` suffix
        database: Database name sent with every request
        collection: Collection holding entries
        counters_collection: Collection holding serial counters (ATOMIC mode)
        allocation: Serial allocation mode

    Serial allocation:
        SCAN aggregates the current maximum, then inserts. ATOMIC keeps a
        counter document and advances it with a compare-and-swap
        ``updateOne`` filtered on the value it read, retrying on
        contention. Mixing modes against one collection is unsupported.

    Example:
        >>> backend = RemoteEntryBackend("https://proxy.example/v1", api_key="...")
        >>> await backend.connect()
        >>> entries = await backend.get_all()
        >>> await backend.close()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        database: str = "credstore",
        collection: str = "entries",
        counters_collection: str = "counters",
        data_source: Optional[str] = None,
        timeout: float = 10.0,
        allocation: AllocationMode = AllocationMode.ATOMIC,
        allocation_retries: int = 5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the remote backend.

        Args:
            base_url: Proxy endpoint
            api_key: Bearer token for the proxy
            database: Database name
            collection: Entry collection name
            counters_collection: Serial counter collection name
            data_source: Optional cluster/data source name
            timeout: Request timeout in seconds
            allocation: Serial allocation mode
            allocation_retries: Compare-and-swap attempts before giving up
            client: Pre-built HTTP client (caller keeps ownership)
        """
        self.base_url = base_url.rstrip("/")
        self.database = database
        self.collection = collection
        self.counters_collection = counters_collection
        self.data_source = data_source
        self.timeout = timeout
        self.allocation = allocation
        self.allocation_retries = allocation_retries
        self._api_key = api_key
        self._client = client
        self._owns_client = client is None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Create the HTTP client if one was not supplied."""
        if self._connected:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        self._connected = True
        logger.info(
            "Remote entry backend ready",
            extra={
                "base_url": self.base_url,
                "database": self.database,
                "collection": self.collection,
                "allocation": self.allocation.value,
            },
        )

    async def close(self) -> None:
        """Close the HTTP client if this backend created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        self._connected = False
        logger.debug("Remote entry backend closed")

    async def get_all(self) -> List[Entry]:
        data = await self._action("find", {"filter": {}})
        documents = data.get("documents")
        if not isinstance(documents, list):
            raise BackendError("Document store returned no documents list")
        return [Entry.from_document(doc) for doc in documents]

    async def get_by_id(self, entry_id: str) -> Entry:
        data = await self._action("findOne", {"filter": _id_filter(entry_id)})
        document = data.get("document")
        if document is None:
            raise NotFoundError(entry_id)
        return Entry.from_document(document)

    async def create(self, draft: EntryDraft) -> Entry:
        """Allocate a serial, insert the document and merge the new id.

        Args:
            draft: Validated entry fields

        Returns:
            The stored entry

        Raises:
            BackendError: If the proxy rejects the insert or allocation fails
        """
        if self.allocation == AllocationMode.ATOMIC:
            serial = await self._allocate_atomic()
        else:
            serial = next_serial(await self._max_serial())

        now = utc_now()
        data = await self._action(
            "insertOne", {"document": draft.to_document(serial, now)}
        )
        inserted_id = data.get("insertedId")
        if isinstance(inserted_id, dict):
            inserted_id = inserted_id.get("$oid")
        if not inserted_id:
            raise BackendError("Document store returned no insertedId")

        logger.debug(
            "Entry inserted",
            extra={"entry_id": inserted_id, "serial_number": serial},
        )
        return draft.to_entry(str(inserted_id), serial, now)

    async def update(self, entry_id: str, changes: Dict[str, Any]) -> Entry:
        current = await self.get_by_id(entry_id)
        fields = dict(changes)
        fields["updatedAt"] = format_timestamp(utc_now(after=current.updated_at))

        data = await self._action(
            "updateOne",
            {"filter": _id_filter(entry_id), "update": {"$set": fields}},
        )
        if not data.get("matchedCount", data.get("modifiedCount", 0)):
            raise NotFoundError(entry_id)

        logger.debug(
            "Entry updated",
            extra={"entry_id": entry_id, "fields": sorted(changes)},
        )
        return await self.get_by_id(entry_id)

    async def delete(self, entry_id: str) -> None:
        data = await self._action("deleteOne", {"filter": _id_filter(entry_id)})
        if not data.get("deletedCount"):
            raise NotFoundError(entry_id)
        logger.debug("Entry deleted", extra={"entry_id": entry_id})

    async def check_username(self, username: str, website: str) -> bool:
        query = {
            "username": {"$regex": f"^{re.escape(username)}$", "$options": "i"},
            "website": {"$regex": re.escape(website), "$options": "i"},
        }
        data = await self._action("findOne", {"filter": query})
        return data.get("document") is not None

    async def _max_serial(self) -> Optional[int]:
        data = await self._action("aggregate", {"pipeline": MAX_SERIAL_PIPELINE})
        documents = data.get("documents") or []
        if not documents:
            return None
        max_serial = documents[0].get("maxSerial")
        if max_serial is None:
            return None
        return _decode_serial(max_serial, "serial maximum")

    async def _allocate_atomic(self) -> int:
        """Advance the serial counter with a compare-and-swap loop.

        Returns:
            The allocated serial number

        Raises:
            BackendError: If every attempt lost the race or failed
        """
        key = f"{self.collection}.serialNumber"
        last_error: Optional[BackendError] = None

        for attempt in range(1, self.allocation_retries + 1):
            data = await self._action(
                "findOne", {"filter": {"_id": key}}, collection=self.counters_collection
            )
            counter = data.get("document")

            if counter is None:
                current = await self._max_serial() or 0
                try:
                    await self._action(
                        "insertOne",
                        {"document": {"_id": key, "value": current}},
                        collection=self.counters_collection,
                    )
                except BackendConnectionError:
                    raise
                except BackendError as e:
                    # Usually another writer seeded the counter first
                    last_error = e
                    logger.debug(
                        "Serial counter seed rejected",
                        extra={"attempt": attempt, "error": e.message},
                    )
                    continue
            else:
                current = _decode_serial(counter.get("value"), f"serial counter {key}")

            data = await self._action(
                "updateOne",
                {
                    "filter": {"_id": key, "value": current},
                    "update": {"$set": {"value": current + 1}},
                },
                collection=self.counters_collection,
            )
            if data.get("modifiedCount") == 1:
                return current + 1

            logger.debug(
                "Serial counter contention",
                extra={"attempt": attempt, "observed": current},
            )

        raise BackendError(
            f"Could not allocate a serial number after {self.allocation_retries} attempts"
        ) from last_error

    async def _action(
        self,
        action: str,
        payload: Dict[str, Any],
        collection: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST one collection action and decode the JSON reply.

        Raises:
            BackendConnectionError: If not connected or the request fails in transit
            BackendError: If the proxy answers non-2xx or with a non-object body
        """
        if not self._connected or self._client is None:
            raise BackendConnectionError("Not connected", address=self.base_url)

        body: Dict[str, Any] = {
            "database": self.database,
            "collection": collection or self.collection,
        }
        if self.data_source:
            body["dataSource"] = self.data_source
        body.update(payload)

        try:
            response = await self._client.post(
                f"{self.base_url}/action/{action}",
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Document store unreachable",
                extra={"action": action, "base_url": self.base_url, "error": str(e)},
            )
            raise BackendConnectionError(
                f"Document store request failed: {e}", address=self.base_url
            ) from e

        if not response.is_success:
            message = _error_message(response)
            logger.warning(
                "Document store action failed",
                extra={"action": action, "status_code": response.status_code, "error": message},
            )
            raise BackendError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(
                f"Invalid JSON from document store ({action}): {e}",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise BackendError(
                f"Unexpected response shape from document store ({action})",
                status_code=response.status_code,
            )
        return data
