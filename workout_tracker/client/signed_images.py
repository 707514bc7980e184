"""Per-view orchestration of signed image URLs.

A view hands over an ordered list of resource ids (gaps allowed) plus one shared
owner document id or a parallel list, and gets back an index-aligned list of
``url | None``. Cache hits resolve immediately; misses are fetched concurrently
and independently, each written back at its own index. Every key with a URL is
kept renewed by the view's RefreshScheduler until the key leaves the list or the
view is disposed.

Must be driven from a running event loop.
"""

import asyncio
import logging
from typing import Callable, Optional, Sequence, Union

from workout_tracker.client.cache import CacheKey, FailureKind
from workout_tracker.client.images import ImageContext
from workout_tracker.client.retry import fetch_credential
from workout_tracker.client.scheduler import RefreshScheduler
from workout_tracker.shared import FETCH_MAX_RETRIES, FETCH_TIMEOUT_MS, RETRY_DELAY_SEC

log = logging.getLogger(__name__)

OwnerDocIds = Union[str, Sequence[Optional[str]], None]


def _keys_for(resource_ids: Sequence[Optional[str]], owner_doc_ids: OwnerDocIds) -> list[Optional[CacheKey]]:
    if isinstance(owner_doc_ids, str) or owner_doc_ids is None:
        owners = [owner_doc_ids] * len(resource_ids)
    else:
        owners = list(owner_doc_ids)
        if len(owners) != len(resource_ids):
            raise ValueError(
                f"owner_doc_ids has {len(owners)} entries for {len(resource_ids)} resource ids"
            )
    return [
        CacheKey(resource_id, owner) if resource_id and owner else None
        for resource_id, owner in zip(resource_ids, owners)
    ]


class SignedImages:
    def __init__(
        self,
        context: ImageContext,
        *,
        on_change: Callable[[list[Optional[str]]], None] | None = None,
        timeout_ms: int = FETCH_TIMEOUT_MS,
        max_retries: int = FETCH_MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SEC,
    ):
        self._context = context
        self._on_change = on_change
        self._timeout_ms = timeout_ms
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        self._resource_ids: Optional[Sequence[Optional[str]]] = None
        self._owner_doc_ids: OwnerDocIds = None
        self._keys: list[Optional[CacheKey]] = []
        self._urls: list[Optional[str]] = []
        self._failures: list[Optional[FailureKind]] = []
        self._generation = 0
        self._loads: set[asyncio.Task] = set()
        self._disposed = False

        self._scheduler = RefreshScheduler(
            self._renew,
            is_interested=self._is_interested,
            now=context.cache.now,
        )
        context.add_deletion_listener(self._on_deleted)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def urls(self) -> list[Optional[str]]:
        return list(self._urls)

    @property
    def failures(self) -> list[Optional[FailureKind]]:
        return list(self._failures)

    @property
    def scheduler(self) -> RefreshScheduler:
        return self._scheduler

    def update(self, resource_ids: Sequence[Optional[str]], owner_doc_ids: OwnerDocIds) -> list[Optional[str]]:
        """Reconcile with a new input list and return the current URLs.

        Passing the very same list objects again is a no-op.
        """
        if self._disposed:
            raise RuntimeError("SignedImages used after dispose()")
        if resource_ids is self._resource_ids and owner_doc_ids is self._owner_doc_ids:
            return self.urls

        keys = _keys_for(resource_ids, owner_doc_ids)
        self._resource_ids = resource_ids
        self._owner_doc_ids = owner_doc_ids
        self._generation += 1
        self._keys = keys
        self._urls = [None] * len(keys)
        self._failures = [None] * len(keys)
        self._scheduler.retain(k for k in keys if k is not None)

        cache = self._context.cache
        started: set[CacheKey] = set()
        for index, key in enumerate(keys):
            if key is None:
                continue
            if cache.is_deleted(key):
                self._failures[index] = FailureKind.NOT_FOUND
                continue
            url = cache.url_for(key)
            if url is not None:
                self._urls[index] = url
                if not self._scheduler.armed(key):
                    self._scheduler.arm(key, cache.get(key))
                continue
            if key in started:
                continue
            started.add(key)
            self._start_load(key, self._generation)

        self._notify()
        return self.urls

    async def settle(self) -> list[Optional[str]]:
        """Wait for every outstanding initial load, then return the URLs."""
        while self._loads:
            await asyncio.gather(*list(self._loads), return_exceptions=True)
        return self.urls

    def dispose(self) -> None:
        """Stop renewals and drop pending loads. Safe to call twice."""
        if self._disposed:
            return
        self._disposed = True
        self._scheduler.close()
        for task in list(self._loads):
            task.cancel()
        self._context.remove_deletion_listener(self._on_deleted)

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _is_interested(self, key: CacheKey) -> bool:
        return not self._disposed and key in self._keys

    def _start_load(self, key: CacheKey, generation: int) -> None:
        task = asyncio.get_running_loop().create_task(self._load(key, generation))
        self._loads.add(task)
        task.add_done_callback(self._loads.discard)

    async def _fetch(self, key: CacheKey, *, force: bool = False) -> Optional[str]:
        return await fetch_credential(
            self._context,
            key,
            self._timeout_ms,
            self._max_retries,
            retry_delay=self._retry_delay,
            force=force,
        )

    async def _load(self, key: CacheKey, generation: int) -> None:
        url = await self._fetch(key)
        if self._disposed or generation != self._generation:
            return
        self._write(key, url)
        credential = self._context.cache.get(key)
        if url is not None and credential is not None and credential.url == url:
            self._scheduler.arm(key, credential)

    async def _renew(self, key: CacheKey) -> None:
        url = await self._fetch(key, force=True)
        if not self._is_interested(key):
            return
        cache = self._context.cache
        if url is None:
            previous = cache.get(key)
            if previous is not None and cache.is_live(key):
                # Transient failure: the old URL still works, try again later.
                log.info(f"renewal for {key} failed, keeping current url")
                self._scheduler.arm(key, previous, renewed=True)
                return
            self._write(key, None)
            return
        self._write(key, url)
        credential = cache.get(key)
        if credential is not None:
            self._scheduler.arm(key, credential, renewed=True)

    def _write(self, key: CacheKey, url: Optional[str]) -> None:
        failure = None if url is not None else (
            self._context.last_failure(key) or FailureKind.UNAVAILABLE
        )
        changed = False
        for index, k in enumerate(self._keys):
            if k != key:
                continue
            if self._urls[index] != url or self._failures[index] != failure:
                changed = True
            self._urls[index] = url
            self._failures[index] = failure
        if changed:
            self._notify()

    def _on_deleted(self, key: CacheKey) -> None:
        self._scheduler.cancel(key)
        if key in self._keys:
            self._write(key, None)

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.urls)
