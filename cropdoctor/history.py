from sqlalchemy.orm import Session

from cropdoctor.logger import logger
from cropdoctor.models import CropImage

HISTORY_LIMIT = 20

STATUS_LABELS = {
    "pending": "Analysis pending or in progress...",
    "success": "Analysis complete",
    "failed": "Analysis failed",
}


def recent_records(db: Session, limit: int = HISTORY_LIMIT):
    """Newest records first, never more than HISTORY_LIMIT of them."""
    limit = max(1, min(limit, HISTORY_LIMIT))
    return (
        db.query(CropImage)
        .order_by(CropImage.created_at.desc(), CropImage.id.desc())
        .limit(limit)
        .all()
    )


def record_status(record: CropImage) -> str:
    return record.status


def status_label(record: CropImage) -> str:
    return STATUS_LABELS[record_status(record)]


def serialize_record(record: CropImage) -> dict:
    data = record.to_dict()
    data["status_label"] = status_label(record)
    return data


def history_rows(db: Session, limit: int = HISTORY_LIMIT):
    rows = [serialize_record(r) for r in recent_records(db, limit)]
    logger.debug(f"History queried: {len(rows)} record(s)")
    return rows
