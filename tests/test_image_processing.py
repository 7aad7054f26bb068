from cropdoctor.diagnosis import parse_diagnosis
from cropdoctor.errors import AnalysisError
from cropdoctor.image_processing import analyze_image, mark_failed
from cropdoctor.models import CropImage


class FakeClient:
    configured = True

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.urls = []

    def diagnose(self, image_url):
        self.urls.append(image_url)
        if self.error is not None:
            raise self.error
        return parse_diagnosis(self.reply)


def add_record(db, **fields):
    record = CropImage(image_url="https://example.supabase.co/storage/v1/object/public/crop-pictures/1_leaf.jpg",
                       file_name="leaf.jpg", **fields)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def test_success_marks_record_completed(db):
    record = add_record(db)
    client = FakeClient('{"disease_name": "Leaf Rust", "cure_instructions": "Apply fungicide X", '
                        '"next_steps_if_not_curable": "Rotate crops"}')

    outcome = analyze_image(db, client, record.id)

    assert outcome.ok
    assert outcome.status == "success"
    assert outcome.message == "Analysis complete for leaf.jpg! Results saved."
    assert client.urls == [record.image_url]
    db.refresh(record)
    assert record.ai_analysis_completed is True
    assert record.disease_name == "Leaf Rust"
    assert record.cure_instructions == "Apply fungicide X"
    assert record.next_steps_if_not_curable == "Rotate crops"
    assert record.ai_error_message is None
    assert record.analyzed_at is not None


def test_unparseable_reply_marks_record_failed(db):
    record = add_record(db)

    outcome = analyze_image(db, FakeClient("Sorry, I can't help with that."), record.id)

    assert not outcome.ok
    assert outcome.message.startswith("AI Analysis Error: AI response was not valid JSON")
    db.refresh(record)
    assert record.ai_analysis_completed is False
    assert "Sorry, I can't help with that." in record.ai_error_message
    assert record.status == "failed"


def test_error_message_truncated_to_500_characters(db):
    record = add_record(db)

    outcome = analyze_image(db, FakeClient("x" * 2000), record.id)

    assert len(outcome.message) > 500
    db.refresh(record)
    assert len(record.ai_error_message) == 500


def test_rerun_overwrites_previous_result(db):
    record = add_record(db)
    analyze_image(db, FakeClient('{"disease_name": "Blight", "cure_instructions": "Copper spray", '
                                 '"next_steps_if_not_curable": "Burn plants"}'), record.id)

    analyze_image(db, FakeClient('{"disease_name": "Healthy"}'), record.id)

    db.refresh(record)
    assert record.disease_name == "Healthy"
    assert record.cure_instructions is None
    assert record.next_steps_if_not_curable is None


def test_failure_after_success_clears_result_fields(db):
    record = add_record(db)
    analyze_image(db, FakeClient('{"disease_name": "Blight", "cure_instructions": "Copper spray"}'), record.id)

    analyze_image(db, FakeClient(error=AnalysisError("Failed to fetch image for analysis (status: 404)")), record.id)

    db.refresh(record)
    assert record.ai_analysis_completed is False
    assert record.disease_name is None
    assert record.cure_instructions is None
    assert record.ai_error_message == "Failed to fetch image for analysis (status: 404)"


def test_success_after_failure_clears_error(db):
    record = add_record(db)
    analyze_image(db, FakeClient(""), record.id)

    analyze_image(db, FakeClient('{"disease_name": "Leaf Rust"}'), record.id)

    db.refresh(record)
    assert record.ai_analysis_completed is True
    assert record.ai_error_message is None


def test_unknown_record(db):
    client = FakeClient('{"disease_name": "Rust"}')

    outcome = analyze_image(db, client, 999)

    assert not outcome.ok
    assert outcome.message == "Invalid image record received for analysis."
    assert client.urls == []


def test_update_failure_still_reports_success(app, db, monkeypatch):
    record = add_record(db)

    def boom():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db, "commit", boom)
    outcome = analyze_image(db, FakeClient('{"disease_name": "Leaf Rust"}'), record.id)

    assert outcome.ok
    assert outcome.record is None

    fresh = app.state.SessionLocal()
    try:
        stored = fresh.query(CropImage).filter(CropImage.id == record.id).first()
        assert stored.ai_analysis_completed is None
        assert stored.disease_name is None
    finally:
        fresh.close()


def test_mark_failed_on_missing_record(db):
    assert mark_failed(db, 12345, "boom") is None


def test_update_failure_outcome_keeps_record_id(db, monkeypatch):
    record = add_record(db)
    record_id = record.id

    def boom():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db, "commit", boom)
    outcome = analyze_image(db, FakeClient('{"disease_name": "Leaf Rust"}'), record_id)

    assert outcome.record_id == record_id
    assert outcome.file_name == "leaf.jpg"


def test_mark_failed_logs_db_error_instead_of_raising(app, db, monkeypatch, caplog):
    record = add_record(db)
    record_id = record.id

    def boom():
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(db, "commit", boom)
    with caplog.at_level("ERROR", logger="cropdoctor"):
        assert mark_failed(db, record_id, "Failed to fetch image for analysis (status: 404)") is None

    assert "Failed to update DB with error state: disk I/O error" in caplog.text

    fresh = app.state.SessionLocal()
    try:
        stored = fresh.query(CropImage).filter(CropImage.id == record_id).first()
        assert stored.ai_analysis_completed is None
        assert stored.ai_error_message is None
    finally:
        fresh.close()
