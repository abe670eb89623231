# fitcoach/demo_quota/lock_reason.py
"""Storage encoding and user-facing copy for quota lock reasons."""
from __future__ import annotations

from typing import Optional

from fitcoach.demo_quota.state_machine import LockReason, LockReasonKind

_DENY_PREFIX = "deny: "

_FIXED = {
    LockReasonKind.QUOTA_EXHAUSTED: "quota",
    LockReasonKind.EVALUATION_TIMEOUT: "timeout",
    LockReasonKind.SERVER_SYNC: "server",
}
_FIXED_REVERSE = {v: k for k, v in _FIXED.items()}


def to_storage(reason: LockReason) -> str:
    if reason.kind == LockReasonKind.EVALUATION_DENIED:
        return _DENY_PREFIX + (reason.message or "")
    return _FIXED[reason.kind]


def from_storage(value: Optional[str]) -> Optional[LockReason]:
    """Unknown values decode to None; an empty denial message decodes to no message."""
    if value is None:
        return None
    kind = _FIXED_REVERSE.get(value)
    if kind is not None:
        return LockReason(kind)
    if value.startswith(_DENY_PREFIX):
        message = value[len(_DENY_PREFIX):]
        return LockReason.evaluation_denied(message or None)
    return None


def user_facing_message(reason: LockReason) -> str:
    if reason.kind == LockReasonKind.QUOTA_EXHAUSTED:
        return "You’ve used both free demos. Unlock full access to continue."
    if reason.kind == LockReasonKind.EVALUATION_DENIED:
        return reason.message or "We can’t offer another free demo right now."
    if reason.kind == LockReasonKind.EVALUATION_TIMEOUT:
        return "Eligibility check timed out. Please try again later or subscribe."
    return "We couldn’t sync with the server. Please try again or contact support."
