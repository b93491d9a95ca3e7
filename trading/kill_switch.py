"""Portfolio-wide trading halt backed by a kill-switch file."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

import config

logger = logging.getLogger(__name__)


class KillSwitch:
    """Latching halt.

    Once tripped it stays tripped for the life of the process. The file makes
    it survive restarts; an operator deletes it to resume trading.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = config.KILL_SWITCH_FILE if path is None else path
        self.reason = ""
        self.tripped_at: datetime | None = None
        if self.path and os.path.exists(self.path):
            self.reason = "KILL_SWITCH_FILE"
            self.tripped_at = datetime.now(timezone.utc)
            logger.warning("KILL_SWITCH reason=file_detected path=%s", self.path)

    @property
    def tripped(self) -> bool:
        return bool(self.reason)

    def trip(self, reason: str, detail: str = "") -> None:
        if self.tripped:
            return
        self.reason = reason
        self.tripped_at = datetime.now(timezone.utc)
        logger.error("KILL_SWITCH tripped reason=%s detail=%s", reason, detail)
        if not self.path:
            return
        try:
            kill_dir = os.path.dirname(self.path)
            if kill_dir:
                os.makedirs(kill_dir, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(f"{self.tripped_at.isoformat()} {reason} {detail}\n")
            logger.warning("KILL_SWITCH reason=auto_created path=%s", self.path)
        except OSError as exc:
            logger.warning("KILL_SWITCH create failed: %s", exc)
