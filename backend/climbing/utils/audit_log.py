from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.reactivated",
    "reservation.cancelled",
    "reservation.admin_cancelled",
    "event_reservation.created",
    "event_reservation.cancelled",
    "waitlist.joined",
    "waitlist.left",
    "waitlist.promoted",
    "slot.created",
    "slot.updated",
    "slot.blocked",
    "slot.unblocked",
    "slot.deleted",
    "event.created",
    "event.updated",
    "event.deleted",
]
AuditInitiator = Literal["user", "admin", "system"]

logger = logging.getLogger(__name__)

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    user_id: Optional[int],
    actor_id: Optional[int] = None,
    reservation_id: Optional[int] = None,
    slot_id: Optional[int] = None,
    event_id: Optional[int] = None,
    participants: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    version: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit structured JSON audit log. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "user_id": user_id,
        "actor_id": actor_id,
        "reservation_id": reservation_id,
        "slot_id": slot_id,
        "event_id": event_id,
        "participants": participants,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "version": version,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc


def audit_after_commit(**fields: Any) -> None:
    """
    Record an action whose transaction already committed.

    The state change stands regardless, so a logging failure is reported
    on the module logger instead of failing the request.
    """
    try:
        emit_audit_log(**fields)
    except RuntimeError:
        logger.exception("audit log failed for %s", fields.get("action"))
