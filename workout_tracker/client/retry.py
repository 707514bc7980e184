# Fetch-with-retry: bounded timeout + fixed backoff around a single signed URL lookup.
# Worst case latency: timeout * (retries + 1) + retry_delay * retries. Never raises on runtime failures.

import asyncio
import logging
from typing import Optional

from workout_tracker.client.cache import CacheKey
from workout_tracker.client.images import ImageContext
from workout_tracker.client.issuer import IssuanceUnavailable
from workout_tracker.shared import FETCH_MAX_RETRIES, FETCH_TIMEOUT_MS, RETRY_DELAY_SEC

log = logging.getLogger(__name__)


async def fetch_credential(
    context: ImageContext,
    key: CacheKey,
    timeout_ms: int = FETCH_TIMEOUT_MS,
    max_retries: int = FETCH_MAX_RETRIES,
    *,
    retry_delay: float = RETRY_DELAY_SEC,
    force: bool = False,
) -> Optional[str]:
    """Return a URL for *key* or None once retries are exhausted.

    Only timeouts and transient issuer failures are retried; denials, missing
    images and metadata errors come back from the context as None straight away.
    """
    retries_left = max_retries
    while True:
        try:
            return await context.fetch(key, timeout=timeout_ms / 1000, force=force)
        except (asyncio.TimeoutError, IssuanceUnavailable) as exc:
            if retries_left <= 0:
                log.warning(f"Failed after retries: {key} ({exc or type(exc).__name__})")
                return None
            retries_left -= 1
            log.debug(f"retrying signed url for {key} in {retry_delay}s ({retries_left} left)")
            await asyncio.sleep(retry_delay)
