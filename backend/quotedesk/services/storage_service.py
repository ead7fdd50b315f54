# Overview: Artifact storage for generated quote documents, plus time-limited signed links.

"""
Artifact Store

put(key, bytes) overwrites; get(key) returns the stored bytes;
get_signed_url(key, ttl) returns a download URL carrying an itsdangerous
timestamped token. The token payload holds the key and its TTL, so links with
different lifetimes can coexist; resolve_token() enforces the TTL.
"""

from __future__ import annotations

import os
import tempfile

from flask import current_app
from itsdangerous import BadSignature, URLSafeTimedSerializer

from ..errors import ExternalServiceError, LinkExpiredError, NotFoundError, ValidationError
from ..time_utils import age_seconds


LINK_SALT = "quotedesk.quote-link"
DEFAULT_LINK_TTL_SECONDS = 7 * 24 * 3600


def _check_key(key: str) -> str:
    if not key or key.startswith("/") or ".." in key.split("/"):
        raise ValidationError(f"Invalid storage key: {key!r}")
    return key


class LocalArtifactStore:
    """Filesystem-backed store rooted at ARTIFACT_STORAGE_DIR."""

    def __init__(self, base_dir: str, secret_key: str, public_base_url: str = ""):
        self.base_dir = os.path.abspath(base_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.serializer = URLSafeTimedSerializer(secret_key, salt=LINK_SALT)

    def _path(self, key: str) -> str:
        return os.path.join(self.base_dir, *_check_key(key).split("/"))

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise ExternalServiceError(f"Failed to store artifact {key}", details={"reason": str(exc)}) from exc

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not os.path.exists(path):
            raise NotFoundError(f"Artifact {key} not found")
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except OSError as exc:
            raise ExternalServiceError(f"Failed to read artifact {key}", details={"reason": str(exc)}) from exc

    def exists(self, key: str) -> bool:
        return os.path.exists(self._path(key))

    def get_signed_url(self, key: str, ttl: int | None = None) -> str:
        ttl = int(ttl or DEFAULT_LINK_TTL_SECONDS)
        if ttl <= 0:
            raise ValidationError("ttl must be positive")
        token = self.serializer.dumps({"key": _check_key(key), "ttl": ttl})
        return f"{self.public_base_url}/api/quotes/{token}"

    def resolve_token(self, token: str) -> str:
        """Return the key a token grants access to, or raise if invalid/expired."""
        try:
            payload, issued_at = self.serializer.loads(token, return_timestamp=True)
        except BadSignature as exc:
            raise NotFoundError("Invalid download link") from exc

        if age_seconds(issued_at) > int(payload.get("ttl", DEFAULT_LINK_TTL_SECONDS)):
            raise LinkExpiredError("Download link has expired")
        return _check_key(payload["key"])


def get_artifact_store():
    """Per-app store instance (tests may replace app.extensions["quotedesk.artifacts"])."""
    store = current_app.extensions.get("quotedesk.artifacts")
    if store is None:
        cfg = current_app.config
        store = LocalArtifactStore(
            base_dir=cfg["ARTIFACT_STORAGE_DIR"],
            secret_key=cfg["SECRET_KEY"],
            public_base_url=cfg.get("PUBLIC_BASE_URL", ""),
        )
        current_app.extensions["quotedesk.artifacts"] = store
    return store
