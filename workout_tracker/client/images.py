"""Image context: the process-wide owner of the signed URL cache.

Constructed once when the app starts and closed at shutdown::

    async with ImageContext.connect(base_url, get_id_token) as images:
        url = await images.fetch_signed_image(public_id, doc_id)

Lookups short-circuit on tombstones and live cache entries. Otherwise at most one
issuance per key is in flight; concurrent callers for the same key share it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from workout_tracker.client.cache import (
    CacheKey,
    CachedCredential,
    CredentialState,
    FailureKind,
    ResourceCache,
)
from workout_tracker.client.issuer import (
    CredentialIssuer,
    IssuanceError,
    IssuanceUnavailable,
    ResourceNotFound,
)

log = logging.getLogger(__name__)

IdTokenProvider = Callable[[], Awaitable[Optional[str]]]
DeletionListener = Callable[[CacheKey], None]


def make_key(resource_id: Optional[str], owner_doc_id: Optional[str]) -> CacheKey:
    if not resource_id or not owner_doc_id:
        raise ValueError("resource_id and owner_doc_id are required")
    return CacheKey(resource_id, owner_doc_id)


class ImageContext:
    def __init__(
        self,
        issuer: CredentialIssuer,
        get_id_token: IdTokenProvider,
        *,
        cache: ResourceCache | None = None,
        now: Callable[[], float] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.cache = cache or ResourceCache(now=now)
        self._issuer = issuer
        self._get_id_token = get_id_token
        self._http_client = http_client
        self._pending: dict[CacheKey, asyncio.Future] = {}
        self._failures: dict[CacheKey, FailureKind] = {}
        self._listeners: list[DeletionListener] = []

    @classmethod
    def connect(
        cls,
        base_url: str,
        get_id_token: IdTokenProvider,
        *,
        timeout: float = 10.0,
        now: Callable[[], float] | None = None,
    ) -> "ImageContext":
        """Build a context that owns its HTTP client (closed by aclose)."""
        client = httpx.AsyncClient(timeout=timeout)
        return cls(CredentialIssuer(client, base_url), get_id_token, now=now, http_client=client)

    async def __aenter__(self) -> "ImageContext":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()
        self._listeners.clear()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def fetch_signed_image(
        self,
        resource_id: Optional[str],
        owner_doc_id: Optional[str],
        *,
        timeout: float | None = None,
        force: bool = False,
    ) -> Optional[str]:
        return await self.fetch(make_key(resource_id, owner_doc_id), timeout=timeout, force=force)

    async def fetch(self, key: CacheKey, *, timeout: float | None = None, force: bool = False) -> Optional[str]:
        """Return a usable URL for *key*, issuing one if needed.

        ``force`` bypasses the live-entry short-circuit (renewals); tombstones are
        always honoured. Transient failures (timeout, transport, 5xx) raise so the
        caller can retry; every other failure is recorded and returns None.
        """
        if self.cache.is_deleted(key):
            return None
        if not force:
            url = self.cache.url_for(key)
            if url is not None:
                log.debug(f"signed url cache hit {key}")
                return url

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._issue(key, timeout))
            self._pending[key] = task
            task.add_done_callback(lambda t, key=key: self._issue_done(key, t))
        return await asyncio.shield(task)

    def _issue_done(self, key: CacheKey, task: asyncio.Future) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the outcome retrieved even if every waiter went away.
        if not task.cancelled():
            task.exception()

    async def _issue(self, key: CacheKey, timeout: float | None) -> Optional[str]:
        try:
            if timeout is None:
                return await self._request(key)
            return await asyncio.wait_for(self._request(key), timeout)
        except asyncio.TimeoutError:
            log.info(f"signed url request timed out after {timeout}s for {key}")
            self._failures[key] = FailureKind.UNAVAILABLE
            raise
        except IssuanceError as exc:
            self._failures[key] = exc.kind
            if exc.transient:
                raise
            if isinstance(exc, ResourceNotFound):
                self._tombstone(key)
            elif exc.kind in (FailureKind.DENIED, FailureKind.METADATA):
                self.cache.mark_denied(key, exc.kind)
            log.warning(f"signed url refused for {key}: {exc}")
            return None

    async def _request(self, key: CacheKey) -> Optional[str]:
        try:
            token = await self._get_id_token()
        except Exception as exc:
            raise IssuanceUnavailable(f"ID token unavailable: {exc}") from exc
        if not token:
            log.error(f"No authenticated user for {key}")
            self._failures[key] = FailureKind.UNAUTHENTICATED
            return None

        issued = await self._issuer.issue(key, token)

        # The image may have been deleted while the request was in flight.
        if self.cache.is_deleted(key):
            return None
        now = self.cache.now()
        issued_at = issued.issued_at if issued.issued_at is not None else now
        if issued_at >= issued.expires_at:
            issued_at = issued.expires_at - 1
        self.cache.put(key, CachedCredential(issued.url, issued_at, issued.expires_at))
        self._failures.pop(key, None)
        return issued.url

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def remove_cached_image(self, resource_id: Optional[str], owner_doc_id: Optional[str]) -> None:
        """Deletion notification: the image is gone, never fetch it again."""
        self._tombstone(make_key(resource_id, owner_doc_id))

    def _tombstone(self, key: CacheKey) -> None:
        self.cache.mark_deleted(key)
        for listener in list(self._listeners):
            listener(key)

    def add_deletion_listener(self, listener: DeletionListener) -> None:
        self._listeners.append(listener)

    def remove_deletion_listener(self, listener: DeletionListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def state(self, key: CacheKey) -> CredentialState:
        if self.cache.is_deleted(key):
            return CredentialState.TOMBSTONED
        if key in self._pending:
            return CredentialState.PENDING
        return self.cache.state(key)

    def is_pending(self, key: CacheKey) -> bool:
        return key in self._pending

    def last_failure(self, key: CacheKey) -> Optional[FailureKind]:
        if self.cache.is_deleted(key):
            return FailureKind.NOT_FOUND
        return self._failures.get(key) or self.cache.denial(key)
