"""Session credential persistence (``session.json``)."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from microgrid_miner.protocol.models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Reads and writes session credentials as a small JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Session | None:
        """Return the stored session, or ``None`` when no usable file exists."""

        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, error)
            return None
        if not isinstance(payload, dict):
            return None
        # Older clients wrote the session id under "id".
        session_id = payload.get("sessionId") or payload.get("id")
        token = payload.get("token")
        if not isinstance(session_id, str) or not isinstance(token, str):
            logger.warning("Session file %s is missing sessionId/token", self.path)
            return None
        if not session_id or not token:
            return None
        return Session(session_id=session_id, token=token)

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps({"sessionId": session.session_id, "token": session.token}, indent=2),
            encoding="utf-8",
        )
        logger.info("Saved session to %s", self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
