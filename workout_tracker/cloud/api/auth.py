"""Firebase ID-token authentication for the signed image API.

Token validation flow:
1. Extract the bearer token from the ``Authorization`` header.
2. Check the in-memory TTL cache for a previous successful verification whose
   token ``exp`` is still in the future.
3. On cache miss, verify with ``firebase_admin.auth.verify_id_token``.
4. Any verification failure rejects with HTTP 401.
5. On success, cache the decoded claims for up to 300 s and return them.
"""

import logging
import threading
import time

from cachetools import TTLCache
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import exceptions as firebase_exceptions

from workout_tracker.cloud.api.firebase import verify_id_token

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Token cache: id token -> decoded claims
# ---------------------------------------------------------------------------

_token_cache: TTLCache = TTLCache(maxsize=1000, ttl=300)

# Lock for thread-safe cache access (sync route handlers run in the threadpool).
_cache_lock = threading.Lock()

# ---------------------------------------------------------------------------
# FastAPI security scheme (shows "Authorize" button in /docs)
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------


def validate_token(token: str | None) -> dict:
    """Verify the Firebase ID token and return its decoded claims (``uid`` included).

    Raises HTTPException(401) on failure.
    """
    if not token:
        raise HTTPException(status_code=401, detail="Missing Authorization token")

    # Cache hit ---------------------------------------------------------------
    with _cache_lock:
        cached = _token_cache.get(token)
    if cached is not None and cached.get("exp", 0) > time.time():
        return cached

    # Verify with Firebase ----------------------------------------------------
    try:
        decoded = verify_id_token(token)
    except (ValueError, firebase_exceptions.FirebaseError) as exc:
        log.info("Auth verification failed: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid or expired token.") from exc

    if not decoded.get("uid"):
        log.info("Verified token carries no uid")
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    # Cache successful verification -------------------------------------------
    with _cache_lock:
        _token_cache[token] = decoded
    return decoded


def bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str | None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials or None

