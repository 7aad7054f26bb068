import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image as PILImage

from cropdoctor.config import Settings
from cropdoctor.diagnosis import GeminiClient
from cropdoctor.main import create_app
from cropdoctor.storage import SupabaseStorage

SUPABASE_URL = "https://example.supabase.co"


class FakeResponse:
    def __init__(self, status_code=200, content=b"", headers=None, json_data=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self._json = json_data

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    @property
    def text(self):
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json


class FakeSession:
    """Stands in for requests.Session against Supabase Storage and Gemini."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.model_reply = ""
        self.model_status = 200
        self.fail_storage = False
        self.missing_images = False

    def post(self, url, data=None, json=None, headers=None):
        self.calls.append(("POST", url, headers, json))
        if "/storage/v1/object/" in url:
            if self.fail_storage:
                return FakeResponse(400, json_data={"message": "Bucket not found"})
            path = url.split("/storage/v1/object/", 1)[1]
            self.objects[path] = data
            return FakeResponse(200, json_data={"Key": path})
        if "generativelanguage.googleapis.com" in url:
            if self.model_status != 200:
                return FakeResponse(self.model_status, json_data={"error": {"message": "Quota exceeded"}})
            body = {"candidates": [{"content": {"parts": [{"text": self.model_reply}]}}]}
            return FakeResponse(200, json_data=body)
        raise AssertionError(f"unexpected POST {url}")

    def get(self, url, headers=None):
        self.calls.append(("GET", url, headers, None))
        path = url.split("/storage/v1/object/public/", 1)[-1]
        if self.missing_images or path not in self.objects:
            return FakeResponse(404, content=b"Object not found")
        return FakeResponse(200, content=self.objects[path], headers={"Content-Type": "image/jpeg"})


def make_image_bytes(fmt="JPEG"):
    buf = io.BytesIO()
    PILImage.new("RGB", (16, 16), color=(40, 160, 60)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes("JPEG")


@pytest.fixture
def settings():
    return Settings(
        supabase_url=SUPABASE_URL,
        supabase_anon_key="anon-key",
        gemini_api_key="gemini-key",
        database_url="sqlite://",
    )


@pytest.fixture
def http():
    return FakeSession()


@pytest.fixture
def storage(settings, http):
    return SupabaseStorage(settings.supabase_url, settings.supabase_anon_key, settings.bucket, session=http)


@pytest.fixture
def gemini(settings, http):
    return GeminiClient(settings.gemini_api_key, settings.gemini_model, session=http)


@pytest.fixture
def app(settings, storage, gemini):
    return create_app(settings, storage=storage, client=gemini)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db(app):
    db = app.state.SessionLocal()
    try:
        yield db
    finally:
        db.close()
