"""
Audit trail for authorization events.
Created: 2026-10-18

Append-only JSONL log of app lifecycle and token events. Never records
secrets, codes or token values, only identifiers.
"""

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger("quoteauth.audit")


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    actor: str  # user_id, client_id, or "anonymous"
    action: str  # e.g. "token_issued", "app_secret_rotated"
    target: str  # e.g. "app:<id>", "token:<id>"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, actor: str, action: str, target: str, **context: Any) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            actor=actor,
            action=action,
            target=target,
            context=context,
        )


class AuditLogger:
    """
    Append-only audit logger.
    Writes JSONL to *log_path* when given; always mirrors to the "quoteauth.audit" logger.
    """

    def __init__(self, log_path: Path | None = None):
        self.log_path = log_path
        self._lock = threading.Lock()

    def log(self, event: AuditEvent) -> None:
        logger.info("%s %s -> %s", event.action, event.actor, event.target)
        if self.log_path is None:
            return
        try:
            line = json.dumps(asdict(event))
            with self._lock:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.error("Failed to write audit log %s: %s", self.log_path, e)

    def log_oauth_event(self, action: str, actor: str, target: str, **context: Any) -> str:
        event = AuditEvent.create(actor=actor, action=action, target=target, **context)
        self.log(event)
        return event.id


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        from quoteauth.config import get_settings

        _audit_logger = AuditLogger(get_settings().audit_log_path)
    return _audit_logger


def reset_audit_logger() -> None:
    global _audit_logger
    _audit_logger = None
