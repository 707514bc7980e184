"""HTTP client for the signed image URL issuer.

Request flow:
1. ``GET {base_url}/api/getSignedImageUrl?resourceId=...&ownerDocId=...`` with
   ``Authorization: Bearer <Firebase ID token>``.
2. ``200`` returns ``{url, expiresAt[, issuedAt]}`` (unix seconds).
3. Any other status is raised as an ``IssuanceError`` subclass carrying the
   ``FailureKind`` views report and whether retrying can help.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from workout_tracker.client.cache import CacheKey, FailureKind
from workout_tracker.shared import (
    AUTH_HEADER,
    BEARER_PREFIX,
    OWNER_DOC_ID_PARAM,
    RESOURCE_ID_PARAM,
    SIGNED_IMAGE_URL_PATH,
)

log = logging.getLogger(__name__)


class IssuanceError(Exception):
    kind: FailureKind = FailureKind.UNAVAILABLE
    transient: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BadIssuanceRequest(IssuanceError):
    kind = FailureKind.DENIED


class IssuanceUnauthorized(IssuanceError):
    kind = FailureKind.UNAUTHENTICATED


class IssuanceDenied(IssuanceError):
    kind = FailureKind.DENIED


class ResourceNotFound(IssuanceError):
    kind = FailureKind.NOT_FOUND


class MissingImageMetadata(IssuanceError):
    kind = FailureKind.METADATA


class IssuanceUnavailable(IssuanceError):
    kind = FailureKind.UNAVAILABLE
    transient = True


_STATUS_ERRORS: dict[int, type[IssuanceError]] = {
    400: BadIssuanceRequest,
    401: IssuanceUnauthorized,
    403: IssuanceDenied,
    404: ResourceNotFound,
    500: MissingImageMetadata,
}


@dataclass(frozen=True)
class IssuedCredential:
    url: str
    expires_at: float
    issued_at: Optional[float] = None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"Failed to get signed URL: {resp.status_code}"


class CredentialIssuer:
    """Thin async wrapper around the issuer endpoint."""

    def __init__(self, client: httpx.AsyncClient, base_url: str = "", path: str = SIGNED_IMAGE_URL_PATH):
        self._client = client
        self._url = f"{base_url.rstrip('/')}{path}"

    async def issue(self, key: CacheKey, id_token: str) -> IssuedCredential:
        try:
            resp = await self._client.get(
                self._url,
                params={RESOURCE_ID_PARAM: key.resource_id, OWNER_DOC_ID_PARAM: key.owner_doc_id},
                headers={AUTH_HEADER: f"{BEARER_PREFIX}{id_token}"},
            )
        except httpx.TransportError as exc:
            raise IssuanceUnavailable(f"Issuer request failed: {exc}") from exc

        if resp.status_code != 200:
            log.info("Issuer returned %s for %s", resp.status_code, key)
            error_cls = _STATUS_ERRORS.get(resp.status_code, IssuanceUnavailable)
            raise error_cls(_error_message(resp), status_code=resp.status_code)

        try:
            data = resp.json()
            url = data["url"]
            expires_at = float(data["expiresAt"])
        except (ValueError, KeyError, TypeError) as exc:
            raise IssuanceUnavailable(f"Malformed issuer response for {key}") from exc
        if not url:
            raise IssuanceUnavailable(f"Issuer returned no URL for {key}")

        issued_at = data.get("issuedAt")
        return IssuedCredential(
            url=url,
            expires_at=expires_at,
            issued_at=float(issued_at) if issued_at is not None else None,
        )
