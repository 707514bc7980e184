"""Environment settings for the workout tracker cloud API.

Read once at import. Tests patch the module attributes directly.
"""

import os

from workout_tracker.shared import SIGNED_URL_EXPIRES as DEFAULT_SIGNED_URL_EXPIRES

_VALID_ENVS = {"stg", "prod"}

API_ENV: str = os.environ.get("API_ENV", "prod")

if API_ENV not in _VALID_ENVS:
    raise RuntimeError(
        f"Invalid API_ENV={API_ENV!r}. Must be one of {sorted(_VALID_ENVS)}."
    )

# Firestore namespace: artifacts/{FIREBASE_APP_ID}/users/{uid}/...
FIREBASE_APP_ID: str = (
    os.environ.get("FIREBASE_APP_ID")
    or os.environ.get("VITE_FIREBASE_APP_ID")
    or "workout-tracker-app-local"
)

# Service account fields; private key arrives with literal "\n" in env.
FIREBASE_PROJECT_ID: str = os.environ.get("FIREBASE_PROJECT_ID", "")
FIREBASE_CLIENT_EMAIL: str = os.environ.get("FIREBASE_CLIENT_EMAIL", "")
FIREBASE_PRIVATE_KEY: str = os.environ.get("FIREBASE_PRIVATE_KEY", "").replace("\\n", "\n")

# S3 bucket holding user images (key = image public id).
IMAGE_BUCKET: str = os.environ.get("IMAGE_BUCKET", "")
IMAGE_BUCKET_REGION: str = os.environ.get("IMAGE_BUCKET_REGION", "us-east-1")

SIGNED_URL_EXPIRES: int = int(os.environ.get("SIGNED_URL_EXPIRES", DEFAULT_SIGNED_URL_EXPIRES))


def missing_settings() -> list[str]:
    """Names of required settings that are unset (empty list when ready to serve)."""
    missing = []
    if not IMAGE_BUCKET:
        missing.append("IMAGE_BUCKET")
    if not FIREBASE_PROJECT_ID:
        missing.append("FIREBASE_PROJECT_ID")
    return missing
