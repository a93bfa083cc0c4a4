"""
Session Store

Persists the current session (either variant) to a JSON file readable only by
the owner. The file holds live tokens and, for OAuth sessions, the DPoP
private key.
"""

import json
import os
from pathlib import Path

import structlog
from pydantic import ValidationError

from openmkt.models.session import ClassicSession, DPoPSession, session_adapter

logger = structlog.get_logger(__name__)


class SessionStore:
    """Single-session JSON file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, session: ClassicSession | DPoPSession) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = session_adapter.dump_json(session, by_alias=False)

        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        os.chmod(self._path, 0o600)
        logger.debug("session_saved", did=session.did, kind=session.kind)

    def load(self) -> ClassicSession | DPoPSession | None:
        """Stored session, or None if there is none or it cannot be read."""
        if not self._path.exists():
            return None
        try:
            with open(self._path, "rb") as f:
                return session_adapter.validate_python(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.error("session_load_failed", path=str(self._path), error=str(e))
            return None

    def clear(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        logger.debug("session_cleared", path=str(self._path))
