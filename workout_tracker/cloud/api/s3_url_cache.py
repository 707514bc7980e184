# Shared cache for S3 presigned image URLs, plus the format lookup the issuer needs.
# Keeps URLs stable across repeated issuance calls so the browser can cache images;
# entries drop out five minutes before the URL itself expires.

import mimetypes
import threading
import time
from typing import Optional

from botocore.exceptions import ClientError
from cachetools import TTLCache

from workout_tracker.shared import SIGNED_URL_EXPIRES

# Returned URLs always have at least this long left to live.
REISSUE_BEFORE_EXPIRY = 300

_cache: TTLCache = TTLCache(maxsize=4096, ttl=SIGNED_URL_EXPIRES - REISSUE_BEFORE_EXPIRY)
_lock = threading.Lock()


class ImageMissing(Exception):
    """The object is not in the bucket."""


def image_content_type(record: dict, head: dict) -> Optional[str]:
    """Content type from the image record's ``format`` (jpg, png, webp...), else the object's image/* type."""
    fmt = (record.get("format") or "").strip().lower().lstrip(".")
    if fmt:
        guessed, _ = mimetypes.guess_type(f"image.{fmt}")
        if guessed and guessed.startswith("image/"):
            return guessed
    content_type = (head.get("ContentType") or "").split(";")[0].strip().lower()
    if content_type.startswith("image/"):
        return content_type
    return None


def head_image(s3_client, bucket: str, key: str) -> dict:
    """head_object for *key*; raises ImageMissing on 404, ClientError otherwise."""
    try:
        return s3_client.head_object(Bucket=bucket, Key=key)
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in ("404", "NoSuchKey", "NotFound"):
            raise ImageMissing(key) from e
        raise


def get_presigned_url(
    s3_client,
    bucket: str,
    key: str,
    content_type: str,
    expires_in: int = SIGNED_URL_EXPIRES,
) -> tuple[str, int]:
    """Return a cached (presigned GET URL, expires_at unix seconds) for *bucket*/*key*, generating one on miss."""
    cache_key = (bucket, key, content_type)
    with _lock:
        cached = _cache.get(cache_key)
        if cached is not None and cached[1] - time.time() > REISSUE_BEFORE_EXPIRY:
            return cached
    expires_at = int(time.time()) + expires_in
    url = s3_client.generate_presigned_url(
        "get_object",
        Params={"Bucket": bucket, "Key": key, "ResponseContentType": content_type},
        ExpiresIn=expires_in,
    )
    with _lock:
        _cache[cache_key] = (url, expires_at)
    return url, expires_at


def clear() -> None:
    with _lock:
        _cache.clear()
