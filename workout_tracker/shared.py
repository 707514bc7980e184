"""Constants shared by the workout tracker client and cloud for signed image access.

Single source of truth for the issuer endpoint path, its query/header names,
credential lifetime, and the renewal/retry timings both sides agree on.
"""

# Issuer endpoint (cloud route, client request path).
SIGNED_IMAGE_URL_PATH = "/api/getSignedImageUrl"
RESOURCE_ID_PARAM = "resourceId"
OWNER_DOC_ID_PARAM = "ownerDocId"
# Older web builds still send these names.
LEGACY_RESOURCE_ID_PARAM = "publicId"
LEGACY_OWNER_DOC_ID_PARAM = "docId"

AUTH_HEADER = "Authorization"
BEARER_PREFIX = "Bearer "

# Lifetime of an issued signed URL, seconds.
SIGNED_URL_EXPIRES = 3600

# Error code the issuer attaches to a 500 when the image format is unknown.
METADATA_MISSING_CODE = "image_metadata_missing"

# Renew 5% of lifetime early, never closer than 5 s to expiry.
RENEWAL_FRACTION = 0.05
MIN_RENEWAL_MARGIN_SEC = 5
# Floor for re-arming after a renewal that came back already inside its margin.
MIN_RENEWAL_DELAY_MS = 2000

# Fetch-with-retry defaults.
FETCH_TIMEOUT_MS = 40000
FETCH_MAX_RETRIES = 2
RETRY_DELAY_SEC = 1.0
