"""
Quota Service - Token allowances attached to invitations.

An invitation stores a quota snapshot as JSON ({"tokens": int, "label": str}).
Usage is the sum of input and output tokens over the invitation's usage logs.
Stored snapshots are parsed strictly: a malformed descriptor is an error, never
silently replaced by a default.
"""
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from coach.core.exceptions import NotFoundError, QuotaFormatError
from coach.database.models import Invitation, UsageLog

# Remaining share below which a turn reports a quota warning
WARNING_THRESHOLD = 0.2


@dataclass(frozen=True)
class Quota:
    tokens: int
    label: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"tokens": self.tokens}
        if self.label is not None:
            data["label"] = self.label
        return data


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    remaining: int
    total: int

    @property
    def low(self) -> bool:
        """Less than WARNING_THRESHOLD of the allowance is left."""
        return self.total > 0 and self.remaining / self.total < WARNING_THRESHOLD

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "remaining": self.remaining, "total": self.total}


def parse_quota(raw: Any) -> Quota:
    """
    Validate a stored quota descriptor.

    Args:
        raw: Decoded JSON value, expected {"tokens": int >= 0, "label"?: str}

    Raises:
        QuotaFormatError: If the value does not have that shape
    """
    if not isinstance(raw, Mapping):
        raise QuotaFormatError("expected an object")

    tokens = raw.get("tokens")
    # bool is an int subclass; reject it explicitly
    if isinstance(tokens, bool) or not isinstance(tokens, int):
        raise QuotaFormatError("'tokens' must be an integer")
    if tokens < 0:
        raise QuotaFormatError("'tokens' must not be negative")

    label = raw.get("label")
    if label is not None and not isinstance(label, str):
        raise QuotaFormatError("'label' must be a string")

    return Quota(tokens=tokens, label=label)


def check_quota(quota: Quota, used: int) -> QuotaStatus:
    remaining = max(0, quota.tokens - used)
    return QuotaStatus(allowed=remaining > 0, remaining=remaining, total=quota.tokens)


def get_usage_for_invitation(session: Session, invitation_id: str) -> int:
    """Total tokens (input + output) logged against an invitation."""
    used = (
        session.query(func.coalesce(func.sum(UsageLog.input_tokens + UsageLog.output_tokens), 0))
        .filter(UsageLog.invitation_id == invitation_id)
        .scalar()
    )
    return int(used or 0)


def get_invitation_quota_status(session: Session, invitation_id: str) -> QuotaStatus:
    invitation = session.get(Invitation, invitation_id)
    if invitation is None:
        raise NotFoundError("Invitation not found")
    quota = parse_quota(invitation.quota)
    return check_quota(quota, get_usage_for_invitation(session, invitation_id))
