# Ownership check: does the caller's owner document reference this image?
# Looks in artifacts/{app}/users/{uid}/measurements/{doc} (imageUrls[*].public_id)
# and then artifacts/{app}/users/{uid}/userGalleryImages/{doc} (public_id).

import logging
from typing import Optional

from google.api_core import exceptions as gcloud_exceptions

log = logging.getLogger(__name__)

MEASUREMENTS_COLLECTION = "measurements"
GALLERY_COLLECTION = "userGalleryImages"


def user_doc_path(app_id: str, user_id: str, collection: str, doc_id: str) -> str:
    return f"artifacts/{app_id}/users/{user_id}/{collection}/{doc_id}"


def _load(db, path: str) -> Optional[dict]:
    snap = db.document(path).get()
    if not snap.exists:
        return None
    return snap.to_dict() or {}


def _measurement_image(data: dict, public_id: str) -> Optional[dict]:
    images = data.get("imageUrls")
    if not isinstance(images, list):
        return None
    for image in images:
        if isinstance(image, dict) and image.get("public_id") == public_id:
            return image
    return None


def find_owned_image(db, app_id: str, user_id: str, doc_id: str, public_id: str) -> Optional[dict]:
    """Return the image record (dict with ``public_id`` and maybe ``format``) if *user_id* owns it.

    None means not owned. Firestore errors also give None: the check fails closed.
    """
    if "/" in doc_id or not doc_id.strip():
        return None
    try:
        measurement = _load(db, user_doc_path(app_id, user_id, MEASUREMENTS_COLLECTION, doc_id))
        if measurement is not None:
            image = _measurement_image(measurement, public_id)
            if image is not None:
                return image

        gallery = _load(db, user_doc_path(app_id, user_id, GALLERY_COLLECTION, doc_id))
        if gallery is not None and gallery.get("public_id") == public_id:
            return gallery
    except gcloud_exceptions.GoogleAPIError as e:
        log.warning(f"Ownership lookup failed user={user_id} doc={doc_id}: {e}")
        return None

    log.warning(
        f"Ownership check failed appId={app_id}, userId={user_id}, docId={doc_id}, publicId={public_id}"
    )
    return None
