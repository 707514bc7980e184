"""Shared fixtures: moto-mocked S3 image bucket, fake Firestore, stubbed ID-token verification, TestClient."""

import os
import time

import boto3
import pytest
from moto import mock_aws
from starlette.testclient import TestClient

os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

BUCKET = "workout-tracker-images"
APP_ID = "workout-tracker-app-local"
USER = "user-1"
OTHER_USER = "user-2"

GOOD_TOKEN = "good-token"
OTHER_TOKEN = "other-token"

# Images referenced by USER's documents
FRONT = "user-uploads/1700000000-front"
SIDE = "user-uploads/1700000001-side"
NO_FORMAT = "user-uploads/1700000002-noformat"
GONE = "user-uploads/1700000003-gone"
GALLERY = "user-uploads/1700000004-gallery"

MEASUREMENT_DOC = "m-2026-01-15"
GALLERY_DOC = "g-1"

_DUMMY_JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 64  # minimal fake JPEG bytes


def _seed_bucket(s3):
    """Populate the mock bucket. GONE is deliberately absent."""
    s3.put_object(Bucket=BUCKET, Key=FRONT, Body=_DUMMY_JPEG, ContentType="image/jpeg")
    s3.put_object(Bucket=BUCKET, Key=SIDE, Body=_DUMMY_JPEG, ContentType="image/jpeg")
    s3.put_object(Bucket=BUCKET, Key=NO_FORMAT, Body=_DUMMY_JPEG, ContentType="application/octet-stream")
    s3.put_object(Bucket=BUCKET, Key=GALLERY, Body=_DUMMY_JPEG, ContentType="application/octet-stream")


# ---------------------------------------------------------------------------
# Fake Firestore (document(path).get() -> snapshot with .exists / .to_dict())
# ---------------------------------------------------------------------------


class FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, db, path):
        self._db = db
        self.path = path

    def get(self):
        self._db.reads.append(self.path)
        return FakeSnapshot(self._db.docs.get(self.path))


class FakeFirestore:
    def __init__(self, docs=None):
        self.docs = dict(docs or {})
        self.reads = []

    def document(self, path):
        return FakeDocumentRef(self, path)


def seeded_firestore() -> FakeFirestore:
    base = f"artifacts/{APP_ID}/users/{USER}"
    return FakeFirestore(
        {
            f"{base}/measurements/{MEASUREMENT_DOC}": {
                "date": "2026-01-15",
                "weight": 81.2,
                "imageUrls": [
                    {"public_id": FRONT, "url": "https://legacy.example/front"},
                    {"public_id": SIDE},
                    {"public_id": NO_FORMAT},
                    {"public_id": GONE},
                ],
            },
            f"{base}/userGalleryImages/{GALLERY_DOC}": {
                "public_id": GALLERY,
                "format": "png",
            },
        }
    )


# ---------------------------------------------------------------------------
# Token verification stub
# ---------------------------------------------------------------------------

_TOKENS = {GOOD_TOKEN: USER, OTHER_TOKEN: OTHER_USER}


def fake_verify_id_token(token):
    uid = _TOKENS.get(token)
    if uid is None:
        raise ValueError("Invalid ID token")
    return {"uid": uid, "exp": time.time() + 3600}


def auth_header(token=GOOD_TOKEN):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="session")
def _mock_aws_session():
    """Session-wide moto mock so the fake S3 bucket lives for all tests."""
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket=BUCKET)
        _seed_bucket(s3)
        yield


@pytest.fixture
def firestore_db():
    return seeded_firestore()


@pytest.fixture
def client(_mock_aws_session, firestore_db, monkeypatch):
    """TestClient with mocked S3, fake Firestore and stubbed token verification.

    Caches are cleared so each test sees fresh token and URL state.
    """
    from workout_tracker.cloud.api import auth, config, s3_url_cache
    from workout_tracker.cloud.api.main import app

    monkeypatch.setattr(config, "IMAGE_BUCKET", BUCKET)
    monkeypatch.setattr(config, "IMAGE_BUCKET_REGION", "us-east-1")
    monkeypatch.setattr(config, "FIREBASE_APP_ID", APP_ID)
    monkeypatch.setattr(config, "FIREBASE_PROJECT_ID", "workout-tracker-test")
    monkeypatch.setattr(config, "SIGNED_URL_EXPIRES", 3600)
    monkeypatch.setattr("workout_tracker.cloud.api.get_db", lambda: firestore_db)
    monkeypatch.setattr(auth, "verify_id_token", fake_verify_id_token)
    auth._token_cache.clear()
    s3_url_cache.clear()

    with TestClient(app) as c:
        yield c
