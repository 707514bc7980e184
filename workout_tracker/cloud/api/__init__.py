import logging
from urllib.parse import unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials

from workout_tracker.cloud.api import config
from workout_tracker.cloud.api.auth import bearer_scheme, bearer_token, validate_token
from workout_tracker.cloud.api.firebase import get_db
from workout_tracker.cloud.api.ownership import find_owned_image
from workout_tracker.cloud.api.s3_url_cache import (
    ImageMissing,
    get_presigned_url,
    head_image,
    image_content_type,
)
from workout_tracker.shared import (
    LEGACY_OWNER_DOC_ID_PARAM,
    LEGACY_RESOURCE_ID_PARAM,
    METADATA_MISSING_CODE,
    OWNER_DOC_ID_PARAM,
    RESOURCE_ID_PARAM,
    SIGNED_IMAGE_URL_PATH,
)

_log = logging.getLogger(__name__)


def _message(message: str, status_code: int, **extra) -> JSONResponse:
    return JSONResponse({"message": message, **extra}, status_code=status_code)


def _s3_client():
    return boto3.client("s3", region_name=config.IMAGE_BUCKET_REGION)


def create_health_router() -> APIRouter:
    """Create the **unprotected** probe router."""
    router = APIRouter(tags=["health"])

    @router.get("/ping")
    def ping():
        _log.info("api ping")
        return {"status": "ok", "source": "cloud"}

    @router.get("/status")
    def status():
        """200 when the image bucket and Firebase project are configured, else 503."""
        missing = config.missing_settings()
        if missing:
            _log.error(f"status check failed: missing {missing}")
            return JSONResponse({"status": "error", "missing": ", ".join(missing)}, status_code=503)
        return {"status": "ok"}

    return router


def create_router() -> APIRouter:
    """Create the signed image router. Auth is checked per route after input validation."""
    router = APIRouter(tags=["images"])
    path = SIGNED_IMAGE_URL_PATH.removeprefix("/api")

    @router.get(path)
    def get_signed_image_url(
        resource_id: str = Query(None, alias=RESOURCE_ID_PARAM),
        owner_doc_id: str = Query(None, alias=OWNER_DOC_ID_PARAM),
        public_id: str = Query(None, alias=LEGACY_RESOURCE_ID_PARAM),
        doc_id: str = Query(None, alias=LEGACY_OWNER_DOC_ID_PARAM),
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    ):
        resource_id = resource_id or public_id
        owner_doc_id = owner_doc_id or doc_id
        if not resource_id or not owner_doc_id:
            return _message(f"{RESOURCE_ID_PARAM} and {OWNER_DOC_ID_PARAM} are required", 400)

        try:
            user = validate_token(bearer_token(credentials))
        except HTTPException as exc:
            return _message(str(exc.detail), exc.status_code)
        user_id = user["uid"]

        decoded_id = unquote(resource_id)
        _log.info(f"signed image url user={user_id} {owner_doc_id=} resource={decoded_id}")

        record = find_owned_image(get_db(), config.FIREBASE_APP_ID, user_id, owner_doc_id, decoded_id)
        if record is None:
            return _message("Forbidden: You do not have permission to view this image.", 403)

        try:
            s3 = _s3_client()
            head = head_image(s3, config.IMAGE_BUCKET, decoded_id)
            content_type = image_content_type(record, head)
            if content_type is None:
                _log.error(f"No format metadata for image {decoded_id}")
                return _message("Image format metadata is missing.", 500, code=METADATA_MISSING_CODE)
            url, expires_at = get_presigned_url(
                s3, config.IMAGE_BUCKET, decoded_id, content_type, config.SIGNED_URL_EXPIRES
            )
        except ImageMissing:
            _log.warning(f"Image {decoded_id} referenced by {owner_doc_id} is not in the bucket")
            return _message("Image not found.", 404)
        except (BotoCoreError, ClientError):
            _log.exception("Signed image url failed")
            return _message("Image host unavailable.", 503)

        return {"url": url, "expiresAt": expires_at, "issuedAt": expires_at - config.SIGNED_URL_EXPIRES}

    return router
