# Firebase Admin wiring: one app per process, Firestore client and ID token verification.

import logging
import threading

import firebase_admin
from firebase_admin import auth, credentials, firestore

from workout_tracker.cloud.api import config

log = logging.getLogger(__name__)

_app_lock = threading.Lock()


def get_app() -> firebase_admin.App:
    """Return the default Firebase app, initializing it from env on first use."""
    with _app_lock:
        try:
            return firebase_admin.get_app()
        except ValueError:
            pass
        if config.FIREBASE_CLIENT_EMAIL and config.FIREBASE_PRIVATE_KEY:
            cred = credentials.Certificate(
                {
                    "type": "service_account",
                    "project_id": config.FIREBASE_PROJECT_ID,
                    "client_email": config.FIREBASE_CLIENT_EMAIL,
                    "private_key": config.FIREBASE_PRIVATE_KEY,
                    "token_uri": "https://oauth2.googleapis.com/token",
                }
            )
        else:
            # Falls back to GOOGLE_APPLICATION_CREDENTIALS / metadata server.
            cred = credentials.ApplicationDefault()
        log.info("Initializing Firebase Admin project=%s", config.FIREBASE_PROJECT_ID or "?")
        options = {"projectId": config.FIREBASE_PROJECT_ID} if config.FIREBASE_PROJECT_ID else None
        return firebase_admin.initialize_app(cred, options)


def get_db():
    """Firestore client for the default app."""
    return firestore.client(app=get_app())


def verify_id_token(token: str) -> dict:
    """Decode and verify a Firebase ID token. Raises on invalid, expired or revoked tokens."""
    return auth.verify_id_token(token, app=get_app())
