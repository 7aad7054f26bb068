from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from cropdoctor.diagnosis import RESULT_FIELDS
from cropdoctor.logger import logger
from cropdoctor.models import ERROR_MESSAGE_LIMIT, CropImage


@dataclass
class Outcome:
    """Result of one upload or analysis step, reported back to the caller."""

    ok: bool
    message: str
    record: Optional[CropImage] = None
    record_id: Optional[int] = None
    file_name: Optional[str] = None

    def __post_init__(self):
        if self.record is not None:
            self.record_id = self.record.id
            self.file_name = self.record.file_name

    @classmethod
    def success(cls, message, record=None, **kwargs):
        return cls(True, message, record, **kwargs)

    @classmethod
    def failure(cls, message, record=None, **kwargs):
        return cls(False, message, record, **kwargs)

    @property
    def status(self) -> str:
        return "success" if self.ok else "failed"


def mark_failed(db: Session, record_id, message: str):
    """Record an analysis failure. A failing write here is only logged."""
    try:
        db_image = db.query(CropImage).filter(CropImage.id == record_id).first()
        if db_image is None:
            logger.warning(f"[{record_id}] Cannot store analysis error: record not found")
            return None

        for field in RESULT_FIELDS:
            setattr(db_image, field, None)
        db_image.ai_analysis_completed = False
        db_image.ai_error_message = message[:ERROR_MESSAGE_LIMIT]
        db_image.analyzed_at = datetime.now(timezone.utc)
        db.commit()
        return db_image
    except Exception as e:
        db.rollback()
        logger.error(f"[{record_id}] Failed to update DB with error state: {e}")
        return None


def analyze_image(db: Session, client, record_id) -> Outcome:
    db_image = db.query(CropImage).filter(CropImage.id == record_id).first()
    if db_image is None or not db_image.image_url:
        logger.warning(f"[{record_id}] Invalid image record received for analysis")
        return Outcome.failure("Invalid image record received for analysis.")

    file_name = db_image.file_name
    name = file_name or db_image.id
    logger.info(f"[{record_id}] Analyzing image: {name}")

    try:
        result = client.diagnose(db_image.image_url)
    except Exception as e:
        logger.error(f"[{record_id}] Analysis failed: {e}")
        record = mark_failed(db, record_id, str(e))
        return Outcome.failure(f"AI Analysis Error: {e}", record, record_id=record_id, file_name=file_name)

    try:
        for field in RESULT_FIELDS:
            setattr(db_image, field, result.get(field))
        db_image.ai_analysis_completed = True
        db_image.ai_error_message = None
        db_image.analyzed_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(db_image)
    except Exception as e:
        # The diagnosis itself succeeded, so the caller still hears success.
        db.rollback()
        logger.error(f"[{record_id}] Failed to save analysis results: {e}")
        return Outcome.success(f"Analysis complete for {name}! Results saved.", record_id=record_id, file_name=file_name)

    logger.info(f"[{record_id}] Analysis complete: disease='{result.get('disease_name')}'")
    return Outcome.success(f"Analysis complete for {name}! Results saved.", db_image)
