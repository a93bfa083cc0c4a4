"""
Local Identity Store

Durable storage for identities added by local action. Verified identities are
never written here; they are always re-derived from the follow graph.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalIdentityStore:
    """JSON file mapping DID -> first-seen timestamp."""

    def __init__(self, path: str | Path | None):
        self._path = Path(path) if path else None

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> dict[str, datetime]:
        """Load stored identities. A missing or unreadable file yields an empty set."""
        if not self._path or not self._path.exists():
            return {}
        try:
            with open(self._path) as f:
                data = json.load(f)
            identities = {}
            for did, entry in data.get("dids", {}).items():
                first_seen = entry.get("first_seen_at") if isinstance(entry, dict) else None
                identities[did] = (
                    datetime.fromisoformat(first_seen) if first_seen else datetime.now(UTC)
                )
            logger.info(f"Loaded {len(identities)} local marketplace identities from {self._path}")
            return identities
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load local marketplace identities: {e}")
            return {}

    def save(self, identities: dict[str, datetime]) -> None:
        """Persist the full local set."""
        if not self._path:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "dids": {
                    did: {"first_seen_at": first_seen.isoformat()}
                    for did, first_seen in sorted(identities.items())
                }
            }
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(self._path)
            logger.debug(f"Saved {len(identities)} local marketplace identities to {self._path}")
        except OSError as e:
            logger.error(f"Failed to save local marketplace identities: {e}")
