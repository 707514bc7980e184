"""Client side of signed image access: cache, issuer client, retry, renewal, and per-view orchestration."""

from workout_tracker.client.cache import (
    CacheKey,
    CachedCredential,
    CredentialState,
    FailureKind,
    ResourceCache,
)
from workout_tracker.client.images import ImageContext
from workout_tracker.client.issuer import CredentialIssuer
from workout_tracker.client.retry import fetch_credential
from workout_tracker.client.scheduler import RefreshScheduler, renewal_delay_ms, renewal_margin
from workout_tracker.client.signed_images import SignedImages

__all__ = [
    "CacheKey",
    "CachedCredential",
    "CredentialIssuer",
    "CredentialState",
    "FailureKind",
    "ImageContext",
    "RefreshScheduler",
    "ResourceCache",
    "SignedImages",
    "fetch_credential",
    "renewal_delay_ms",
    "renewal_margin",
]
