import os
from dataclasses import dataclass
from typing import List, Optional

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_DATABASE_URL = f"sqlite:///{os.path.join(BASE_DIR, 'crop_images.db')}"

DEFAULT_BUCKET = "crop-pictures"
DEFAULT_MODEL = "gemini-1.5-flash"


@dataclass(frozen=True)
class Settings:
    """Connection details for the hosted services.

    Built once at startup and handed to every component that talks to the
    outside world. Missing credentials do not stop the service; the calls
    that need them fail one by one instead.
    """

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    bucket: str = DEFAULT_BUCKET
    gemini_model: str = DEFAULT_MODEL
    database_url: str = DEFAULT_DATABASE_URL

    def missing(self) -> List[str]:
        required = {
            "SUPABASE_URL": self.supabase_url,
            "SUPABASE_ANON_KEY": self.supabase_anon_key,
            "GEMINI_API_KEY": self.gemini_api_key,
        }
        return [name for name, value in required.items() if not value]

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def inference_configured(self) -> bool:
        return bool(self.gemini_api_key)


def load_settings(environ=None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        supabase_url=env.get("SUPABASE_URL") or None,
        supabase_anon_key=env.get("SUPABASE_ANON_KEY") or None,
        gemini_api_key=env.get("GEMINI_API_KEY") or None,
        bucket=env.get("SUPABASE_BUCKET") or DEFAULT_BUCKET,
        gemini_model=env.get("GEMINI_MODEL") or DEFAULT_MODEL,
        database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
    )
