"""
remote.client: the remote store collaborator.

Design notes:
- Async-only: all public methods are coroutines.
- RemoteStore is a structural Protocol: anything with insert/update/delete
  coroutines can be drained against (the tests use an in-memory fake).
- RestRemoteStore speaks a PostgREST-style HTTP API over httpx.AsyncClient.
  Caller must call close() when done.
- Every failure leaves this module as RemoteConnectionError,
  RemoteTemporaryError or RemoteRejection (see remote.exceptions).

Exports:
    RemoteStore      -- protocol the sync engine talks to
    RestRemoteStore  -- HTTP implementation
    apply_mutation   -- exhaustive dispatch of a Mutation onto a RemoteStore
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from remote.exceptions import translate_http_exception
from sync_queue.models import DEFAULT_PRIMARY_KEY, Delete, Insert, Mutation, Update

log = logging.getLogger("FieldSync.remote.client")


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RemoteStore(Protocol):
    """Per-collection insert/update/delete by primary key. Methods raise on failure."""

    async def insert(
        self, collection: str, record: dict, idempotency_key: Optional[str] = None
    ) -> None: ...

    async def update(
        self, collection: str, key: Any, record: dict, idempotency_key: Optional[str] = None
    ) -> None: ...

    async def delete(
        self, collection: str, key: Any, idempotency_key: Optional[str] = None
    ) -> None: ...


async def apply_mutation(
    remote: RemoteStore,
    collection: str,
    mutation: Mutation,
    idempotency_key: Optional[str] = None,
) -> None:
    """
    Apply one mutation to the remote store.

    Raises:
        TypeError: mutation is not Insert, Update or Delete
        Whatever the remote store raises for a failed write
    """
    if isinstance(mutation, Insert):
        await remote.insert(collection, mutation.record, idempotency_key=idempotency_key)
    elif isinstance(mutation, Update):
        await remote.update(collection, mutation.key, mutation.record, idempotency_key=idempotency_key)
    elif isinstance(mutation, Delete):
        await remote.delete(collection, mutation.key, idempotency_key=idempotency_key)
    else:
        raise TypeError(f"Unsupported mutation: {type(mutation).__name__}")


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------


class RestRemoteStore:
    """
    PostgREST-style remote store client.

    Requests:
        insert  POST   {base}/rest/v1/{collection}
        update  PATCH  {base}/rest/v1/{collection}?{pk}=eq.{key}
        delete  DELETE {base}/rest/v1/{collection}?{pk}=eq.{key}

    Usage::

        remote = RestRemoteStore("https://db.example.org", api_key="anon-key")
        try:
            await remote.insert("farmers", {"id": "F1", "name": "Amina"})
        finally:
            await remote.close()
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        primary_key: str = DEFAULT_PRIMARY_KEY,
        timeout: float = 10.0,
        connect_timeout: float = 5.0,
        upsert_inserts: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Create the async remote store client.

        Args:
            base_url:        Server URL, e.g. ``https://db.example.org``. Trailing
                             slashes are stripped.
            api_key:         Sent as ``apikey`` and bearer ``Authorization`` headers.
            primary_key:     Primary key column used for update/delete filters.
            timeout:         Total request timeout in seconds.
            connect_timeout: Connect timeout in seconds.
            upsert_inserts:  Send inserts as merge-duplicates upserts so a
                             redelivered insert does not fail with a conflict.
            transport:       Optional httpx transport (tests).
        """
        self._rest_url = base_url.rstrip("/") + "/rest/v1"
        self._primary_key = primary_key
        self._upsert_inserts = upsert_inserts

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
        )
        log.debug("RestRemoteStore initialised, url=%s api_key=%s", self._rest_url, bool(api_key))

    async def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        await self._client.aclose()

    def _collection_url(self, collection: str) -> str:
        return f"{self._rest_url}/{collection}"

    def _key_filter(self, key: Any) -> dict[str, str]:
        return {self._primary_key: f"eq.{key}"}

    async def _send(
        self,
        method: str,
        collection: str,
        idempotency_key: Optional[str],
        prefer: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one request and translate every failure.

        Raises:
            RemoteConnectionError: Server unreachable.
            RemoteTemporaryError:  Timeout, 429 or 5xx.
            RemoteRejection:       Any other 4xx.
        """
        headers = {"Prefer": prefer}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        try:
            resp = await self._client.request(
                method, self._collection_url(collection), headers=headers, **kwargs
            )
            resp.raise_for_status()
        except Exception as exc:
            translated = translate_http_exception(exc)
            log.debug("%s %s failed: %s", method, collection, translated)
            raise translated from exc
        return resp

    async def insert(
        self, collection: str, record: dict, idempotency_key: Optional[str] = None
    ) -> None:
        prefer = "return=minimal"
        if self._upsert_inserts:
            prefer = "resolution=merge-duplicates,return=minimal"
        await self._send("POST", collection, idempotency_key, prefer, json=record)

    async def update(
        self, collection: str, key: Any, record: dict, idempotency_key: Optional[str] = None
    ) -> None:
        await self._send(
            "PATCH", collection, idempotency_key, "return=minimal",
            params=self._key_filter(key), json=record,
        )

    async def delete(
        self, collection: str, key: Any, idempotency_key: Optional[str] = None
    ) -> None:
        await self._send(
            "DELETE", collection, idempotency_key, "return=minimal",
            params=self._key_filter(key),
        )

    async def ping(self) -> None:
        """
        Reachability check against the API root.

        Raises:
            RemoteConnectionError, RemoteTemporaryError or RemoteRejection
        """
        try:
            resp = await self._client.get(self._rest_url + "/")
            resp.raise_for_status()
        except Exception as exc:
            raise translate_http_exception(exc) from exc
