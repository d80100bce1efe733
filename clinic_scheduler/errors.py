# clinic_scheduler/errors.py
"""
Recoverable, user-facing outcomes of the booking core.

Every error carries a machine-discriminable ``kind``, a specific ``code`` and a
human-readable ``reason``. Storage failures are never wrapped here: they
propagate as the SQLAlchemy exceptions they are.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class ClinicError(Exception):
    kind = "error"
    http_status = 400

    def __init__(self, reason: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(reason)
        self.reason = reason
        self.code = code or self.kind
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "kind": self.kind,
            "code": self.code,
            "reason": self.reason,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, reason={self.reason!r})"


class ValidationError(ClinicError):
    """Malformed input or an admin mutation that breaks a schedule/vacation rule."""
    kind = "validation"
    http_status = 422


class SchedulingConflict(ClinicError):
    """The slot is not structurally available (vacation, no schedule, past, horizon)."""
    kind = "scheduling_conflict"
    http_status = 409


class OccupancyConflict(ClinicError):
    kind = "occupancy_conflict"
    http_status = 409


class EligibilityError(ClinicError):
    kind = "eligibility"
    http_status = 403


class IllegalStateTransition(ClinicError):
    kind = "illegal_state_transition"
    http_status = 409


class AuthorizationError(ClinicError):
    kind = "authorization"
    http_status = 403


class NotFound(ClinicError):
    kind = "not_found"
    http_status = 404


def _jsonable(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):  # enums
        return value.value
    return value
