"""Proactive renewal of signed URLs before they expire.

For a credential ``{issued_at, expires_at}``:

- ``margin = max(round(lifetime * 0.05), 5)`` seconds,
- ``delay_ms = (expires_at - now - margin) * 1000``,
- ``delay_ms <= 0`` renews immediately, otherwise a one-shot timer is armed.

Each successful renewal re-arms, so a key keeps renewing for as long as the
owner is interested in it. A key never has more than one live timer.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional

from workout_tracker.client.cache import CacheKey, CachedCredential
from workout_tracker.shared import MIN_RENEWAL_DELAY_MS, MIN_RENEWAL_MARGIN_SEC, RENEWAL_FRACTION

log = logging.getLogger(__name__)


def renewal_margin(issued_at: float, expires_at: float) -> int:
    """Seconds before expiry at which to renew."""
    lifetime = expires_at - issued_at
    return max(round(lifetime * RENEWAL_FRACTION), MIN_RENEWAL_MARGIN_SEC)


def renewal_delay_ms(issued_at: float, expires_at: float, now: float) -> float:
    return (expires_at - now - renewal_margin(issued_at, expires_at)) * 1000


class RefreshScheduler:
    def __init__(
        self,
        renew: Callable[[CacheKey], Awaitable[None]],
        *,
        is_interested: Callable[[CacheKey], bool] = lambda key: True,
        now: Callable[[], float] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._renew = renew
        self._is_interested = is_interested
        self._now = now or time.time
        self._loop = loop
        self._timers: dict[CacheKey, asyncio.TimerHandle] = {}
        self._deadlines: dict[CacheKey, float] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def arm(self, key: CacheKey, credential: CachedCredential, *, renewed: bool = False) -> Optional[float]:
        """Schedule the next renewal for *key*; returns the delay in ms, or None if not armed.

        ``renewed`` marks a credential that itself came from a renewal: if it is
        already inside its margin the next attempt waits MIN_RENEWAL_DELAY_MS
        instead of firing at once.
        """
        if self._closed or credential.deleted or not self._is_interested(key):
            self.cancel(key)
            return None

        delay_ms = renewal_delay_ms(credential.issued_at, credential.expires_at, self._now())
        if delay_ms <= 0 and renewed:
            delay_ms = MIN_RENEWAL_DELAY_MS

        self.cancel(key)
        if delay_ms <= 0:
            log.debug(f"credential for {key} inside renewal margin, renewing now")
            self._deadlines[key] = self._now()
            self._start_renewal(key)
            return 0.0

        loop = self._get_loop()
        self._timers[key] = loop.call_later(delay_ms / 1000, self._fire, key)
        self._deadlines[key] = self._now() + delay_ms / 1000
        log.debug(f"renewal for {key} armed in {delay_ms:.0f}ms")
        return delay_ms

    def _fire(self, key: CacheKey) -> None:
        self._timers.pop(key, None)
        if self._closed or not self._is_interested(key):
            self._deadlines.pop(key, None)
            return
        self._start_renewal(key)

    def _start_renewal(self, key: CacheKey) -> None:
        task = self._get_loop().create_task(self._run_renewal(key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_renewal(self, key: CacheKey) -> None:
        try:
            await self._renew(key)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception(f"renewal for {key} failed")
        finally:
            if key not in self._timers:
                self._deadlines.pop(key, None)

    def cancel(self, key: CacheKey) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()
        self._deadlines.pop(key, None)

    def retain(self, keys: Iterable[CacheKey]) -> None:
        """Cancel timers for every key not in *keys*."""
        keep = set(keys)
        for key in [k for k in self._timers if k not in keep]:
            self.cancel(key)

    def close(self) -> None:
        """Cancel all timers and running renewals; later arm() calls do nothing.

        A renewal waiting on an issuance shared with other callers only stops
        waiting; the shared request itself is left to finish.
        """
        self._closed = True
        for key in list(self._timers):
            self.cancel(key)
        for task in list(self._tasks):
            task.cancel()
        self._deadlines.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def armed(self, key: CacheKey) -> bool:
        return key in self._timers

    def deadline(self, key: CacheKey) -> Optional[float]:
        """Wall-clock time (per the injected clock) the next renewal is due."""
        return self._deadlines.get(key)

    def __len__(self) -> int:
        return len(self._timers)
