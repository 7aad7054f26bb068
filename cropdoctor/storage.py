from urllib.parse import quote

import requests

from cropdoctor.errors import ConfigurationError, StorageError
from cropdoctor.logger import logger

CACHE_CONTROL_SECONDS = 3600


class SupabaseStorage:
    """Minimal client for the Supabase Storage REST API.

    Only the two calls the upload flow needs: put an object into a public
    bucket and build the public URL it is served from.
    """

    def __init__(self, base_url, anon_key, bucket, session=None):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.anon_key = anon_key
        self.bucket = bucket
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.anon_key)

    def _require_config(self):
        if not self.configured:
            raise ConfigurationError("Supabase storage is not configured. Check SUPABASE_URL and SUPABASE_ANON_KEY.")

    def _object_path(self, key: str) -> str:
        return f"{quote(self.bucket)}/{quote(key)}"

    def upload(self, key: str, data: bytes, content_type: str) -> None:
        self._require_config()
        url = f"{self.base_url}/storage/v1/object/{self._object_path(key)}"
        headers = {
            "Authorization": f"Bearer {self.anon_key}",
            "apikey": self.anon_key,
            "Content-Type": content_type,
            "cache-control": f"max-age={CACHE_CONTROL_SECONDS}",
            "x-upsert": "false",
        }

        logger.debug(f"Uploading {len(data)} bytes to bucket '{self.bucket}' as '{key}'")
        try:
            resp = self.session.post(url, data=data, headers=headers)
        except requests.RequestException as e:
            raise StorageError(str(e)) from e

        if not resp.ok:
            raise StorageError(_error_detail(resp))

        logger.info(f"Stored object '{key}' in bucket '{self.bucket}'")

    def public_url(self, key: str) -> str:
        self._require_config()
        return f"{self.base_url}/storage/v1/object/public/{self._object_path(key)}"


def _error_detail(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for field in ("message", "error", "msg"):
            if body.get(field):
                return f"{body[field]} (status: {resp.status_code})"
    return f"HTTP {resp.status_code}"
