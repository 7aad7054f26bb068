import os
import threading
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from sqlalchemy.orm import Session

from cropdoctor.config import Settings, load_settings
from cropdoctor.database import init_db, make_engine, make_session_factory
from cropdoctor.diagnosis import GeminiClient
from cropdoctor.errors import CropDoctorError
from cropdoctor.history import HISTORY_LIMIT, history_rows, serialize_record
from cropdoctor.image_processing import Outcome, analyze_image
from cropdoctor.logger import logger
from cropdoctor.models import CropImage
from cropdoctor.storage import SupabaseStorage
from cropdoctor.upload import upload_image


class RefreshKey:
    """Counter bumped whenever a record may have changed."""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def bump(self) -> int:
        with self._lock:
            self._value += 1
            return self._value


def get_db(request: Request):
    db = request.app.state.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_record_or_404(db: Session, image_id: int) -> CropImage:
    record = db.query(CropImage).filter(CropImage.id == image_id).first()
    if not record:
        logger.warning(f"Image {image_id} not found")
        raise HTTPException(status_code=404, detail="Image not found")
    return record


def outcome_response(outcome: Outcome, stage: str, file_name=None) -> dict:
    record = outcome.record
    return {
        "status": outcome.status,
        "data": {
            "stage": stage,
            "image_id": outcome.record_id,
            "file_name": outcome.file_name or file_name,
            "message": outcome.message,
            "record": serialize_record(record) if record is not None else None,
        },
        "error": None if outcome.ok else outcome.message,
    }


def create_app(settings: Optional[Settings] = None, storage=None, client=None) -> FastAPI:
    settings = settings or load_settings()

    missing = settings.missing()
    if missing:
        logger.error(f"Missing configuration: {', '.join(missing)}. Dependent calls will fail until it is set.")

    app = FastAPI(title="Crop Doctor AI", version="1.0")

    engine = make_engine(settings.database_url)
    init_db(engine)
    logger.info("Application startup: database tables ensured")

    app.state.settings = settings
    app.state.engine = engine
    app.state.SessionLocal = make_session_factory(engine)
    app.state.storage = storage or SupabaseStorage(settings.supabase_url, settings.supabase_anon_key, settings.bucket)
    app.state.client = client or GeminiClient(settings.gemini_api_key, settings.gemini_model)
    app.state.refresh_key = RefreshKey()

    @app.get("/")
    def read_root():
        return {
            "status": "online",
            "service": "Crop Doctor AI",
            "storage": "configured" if settings.storage_configured else "not configured",
            "inference": "configured" if settings.inference_configured else "not configured",
            "database": engine.url.get_backend_name(),
        }

    @app.post("/api/images")
    def upload_images(file: list[UploadFile] = File(...), db: Session = Depends(get_db)):
        logger.info(f"POST /api/images — received {len(file)} file(s)")
        response = []

        for upload in file:
            logger.info(f"Processing upload: filename='{upload.filename}', content_type='{upload.content_type}'")
            contents = upload.file.read()

            try:
                record = upload_image(db, app.state.storage, upload.filename, contents, upload.content_type)
            except CropDoctorError as e:
                logger.warning(f"Upload of '{upload.filename}' failed: {e}")
                outcome = Outcome.failure(f"Upload Error: {e}")
                response.append(outcome_response(outcome, "upload", upload.filename))
                continue

            outcome = analyze_image(db, app.state.client, record.id)
            app.state.refresh_key.bump()
            response.append(outcome_response(outcome, "analysis"))

        logger.info(f"POST /api/images — completed: {len(response)} result(s) returned")
        return {"results": response, "refresh_key": app.state.refresh_key.value}

    @app.post("/api/images/{image_id}/analyze")
    def reanalyze_image(image_id: int, db: Session = Depends(get_db)):
        logger.info(f"POST /api/images/{image_id}/analyze — re-running analysis")
        get_record_or_404(db, image_id)
        outcome = analyze_image(db, app.state.client, image_id)
        app.state.refresh_key.bump()
        return outcome_response(outcome, "analysis")

    @app.get("/api/images/{image_id}")
    def get_image(image_id: int, db: Session = Depends(get_db)):
        logger.info(f"GET /api/images/{image_id} — fetching image detail")
        record = get_record_or_404(db, image_id)
        return {"status": record.status, "data": serialize_record(record), "error": record.ai_error_message}

    @app.get("/api/history")
    def get_history(
        refresh_key: Optional[int] = Query(None),
        limit: int = Query(HISTORY_LIMIT, ge=1, le=HISTORY_LIMIT),
        db: Session = Depends(get_db),
    ):
        key = app.state.refresh_key.value if refresh_key is None else refresh_key
        logger.info(f"GET /api/history — refresh_key={key}, limit={limit}")
        try:
            rows = history_rows(db, limit)
        except Exception as e:
            logger.error(f"Error fetching history: {e}")
            return {"status": "failed", "data": [], "refresh_key": key, "error": f"Error loading history: {e}"}
        return {"status": "success", "data": rows, "refresh_key": key, "error": None}

    @app.get("/api/stats")
    def get_stats(db: Session = Depends(get_db)):
        logger.info("GET /api/stats — computing aggregate statistics")
        total = db.query(CropImage).count()
        successful = db.query(CropImage).filter(CropImage.ai_analysis_completed.is_(True)).count()
        failed = db.query(CropImage).filter(CropImage.ai_analysis_completed.is_(False)).count()
        pending = db.query(CropImage).filter(CropImage.ai_analysis_completed.is_(None)).count()
        logger.info(f"GET /api/stats — total={total}, successful={successful}, failed={failed}, pending={pending}")

        return {"total": total, "successful": successful, "failed": failed, "pending": pending}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("cropdoctor.main:app", host="0.0.0.0", port=int(os.environ.get("PORT", 8000)))
