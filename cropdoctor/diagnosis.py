import base64
import io
import json
import re

import requests
from PIL import Image as PILImage

from cropdoctor.errors import AnalysisError, ConfigurationError
from cropdoctor.logger import logger

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

RESULT_FIELDS = ("disease_name", "cure_instructions", "next_steps_if_not_curable")

DIAGNOSIS_PROMPT = """
You are an agricultural expert. Analyze the following image of a crop.
Your response MUST be a JSON object with the following keys: "disease_name", "cure_instructions", "next_steps_if_not_curable".
- "disease_name": Identify the likely disease. If healthy or unclear, state that.
- "cure_instructions": Provide concise, actionable steps to treat the identified disease. Mention organic and chemical options if applicable.
- "next_steps_if_not_curable": If the disease is severe or untreatable, suggest what the farmer should do next (e.g., remove plants, soil treatment, future prevention).

Example JSON response:
{
  "disease_name": "Powdery Mildew",
  "cure_instructions": "Increase air circulation. Apply neem oil or a sulfur-based fungicide. Remove severely affected leaves.",
  "next_steps_if_not_curable": "If widespread and severe, remove and destroy infected plants to prevent spread. Rotate crops next season."
}
""".strip()

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def parse_diagnosis(raw) -> dict:
    """Turn the model's free-form reply into the three result fields.

    The model is asked for bare JSON but often wraps it in a ```json fence,
    so a fenced block wins over the full text when present.
    """
    raw = raw or ""
    match = _FENCE_RE.search(raw)
    text = match.group(1) if match else raw
    text = text.strip()

    if not text:
        raise AnalysisError("AI response was empty.")

    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise AnalysisError(f"AI response was not valid JSON. Raw response: {raw}") from e

    if not isinstance(parsed, dict):
        raise AnalysisError(f"AI response was not valid JSON. Raw response: {raw}")

    if not parsed.get("disease_name"):
        raise AnalysisError(f"AI response did not include disease_name. Raw response: {raw}")

    result = {}
    for field in RESULT_FIELDS:
        value = parsed.get(field)
        if value is not None and not isinstance(value, str):
            value = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
        result[field] = value
    return result


def detect_mime_type(image_bytes: bytes, default="image/jpeg") -> str:
    try:
        fmt = PILImage.open(io.BytesIO(image_bytes)).format
    except Exception:
        return default
    return PILImage.MIME.get(fmt, default)


class GeminiClient:
    """Sends an image plus the diagnosis prompt to Gemini over its REST API."""

    def __init__(self, api_key, model, session=None):
        self.api_key = api_key
        self.model = model
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def fetch_image(self, image_url: str):
        try:
            resp = self.session.get(image_url)
        except requests.RequestException as e:
            raise AnalysisError(f"Failed to fetch image for analysis: {e}") from e

        if not resp.ok:
            raise AnalysisError(f"Failed to fetch image for analysis (status: {resp.status_code})")

        content = resp.content
        header = (resp.headers.get("Content-Type") or "").split(";")[0].strip()
        mime_type = header if header.startswith("image/") else detect_mime_type(content)
        logger.debug(f"Fetched {len(content)} bytes ({mime_type}) from {image_url}")
        return content, mime_type

    def generate(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        if not self.configured:
            raise ConfigurationError("Gemini API key is missing. Check GEMINI_API_KEY.")

        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            }
                        },
                    ]
                }
            ]
        }

        try:
            resp = self.session.post(
                GEMINI_ENDPOINT.format(model=self.model),
                json=payload,
                headers={"x-goog-api-key": self.api_key},
            )
        except requests.RequestException as e:
            raise AnalysisError(f"Model request failed: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if not resp.ok:
            message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
            raise AnalysisError(f"Model request failed (status: {resp.status_code}): {message or resp.text}")

        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def diagnose(self, image_url: str) -> dict:
        if not self.configured:
            raise ConfigurationError("Gemini API key is missing. Check GEMINI_API_KEY.")

        image_bytes, mime_type = self.fetch_image(image_url)
        raw = self.generate(DIAGNOSIS_PROMPT, image_bytes, mime_type)
        logger.debug(f"Model replied with {len(raw)} characters")
        return parse_diagnosis(raw)
