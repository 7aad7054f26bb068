import io
import re
import time

from PIL import Image as PILImage
from sqlalchemy.orm import Session

from cropdoctor.errors import CropDoctorError, UploadError
from cropdoctor.logger import logger
from cropdoctor.models import CropImage

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png"}


def build_storage_key(file_name, now=None) -> str:
    """Object key for an upload: ``<epoch millis>_<name with whitespace as _>``."""
    millis = int((time.time() if now is None else now) * 1000)
    safe_name = re.sub(r"\s", "_", file_name or "") or "upload"
    return f"{millis}_{safe_name}"


def validate_image(contents: bytes, content_type) -> None:
    if not content_type or content_type not in ALLOWED_CONTENT_TYPES:
        raise UploadError(f"Invalid file type: {content_type}")

    # Validate actual image content (eg extension is changed)
    try:
        PILImage.open(io.BytesIO(contents)).verify()
    except Exception as e:
        raise UploadError("Corrupted or invalid image content") from e


def upload_image(db: Session, storage, file_name, contents: bytes, content_type) -> CropImage:
    """Store an image and create its pending record.

    The storage write and the insert are not transactional together: if the
    insert fails the stored object stays behind in the bucket.
    """
    validate_image(contents, content_type)

    key = build_storage_key(file_name)

    try:
        storage.upload(key, contents, content_type)
    except CropDoctorError as e:
        raise UploadError(f"Storage upload failed: {e}") from e

    public_url = storage.public_url(key)
    if not public_url:
        raise UploadError("Failed to get public URL.")
    logger.debug(f"Public URL for '{key}': {public_url}")

    record = CropImage(
        image_url=public_url,
        file_name=file_name,
        storage_key=key,
        ai_analysis_completed=None,
    )

    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except Exception as e:
        db.rollback()
        logger.warning(f"Stored object '{key}' is orphaned: database insert failed")
        raise UploadError(f"Database insert failed: {e}") from e

    logger.info(f"[{record.id}] Record created for '{file_name}' (pending analysis)")
    return record
