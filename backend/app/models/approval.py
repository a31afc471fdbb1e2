from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base


class ApproverKind(str, enum.Enum):
    USER = "user"
    ROLE = "role"
    POSITION = "position"

# wire key carrying the id for each kind
_ID_KEYS = {
    ApproverKind.USER: "approver_id",
    ApproverKind.ROLE: "approver_role_id",
    ApproverKind.POSITION: "approver_position_id",
}


@dataclass(frozen=True)
class ApproverRef:
    """Who an approval action is addressed to: a user, a role or a position."""
    kind: ApproverKind
    id: int

    @classmethod
    def user(cls, user_id: int) -> "ApproverRef":
        return cls(ApproverKind.USER, int(user_id))

    @classmethod
    def role(cls, role_id: int) -> "ApproverRef":
        return cls(ApproverKind.ROLE, int(role_id))

    @classmethod
    def position(cls, position_id: int) -> "ApproverRef":
        return cls(ApproverKind.POSITION, int(position_id))

    @classmethod
    def from_descriptor(cls, data: Dict[str, Any]) -> Optional["ApproverRef"]:
        """Parse {approver_type, approver_id|approver_role_id|approver_position_id}; None if incomplete."""
        try:
            kind = ApproverKind(str(data.get("approver_type") or "").lower())
        except ValueError:
            return None
        raw = data.get(_ID_KEYS[kind])
        if raw in (None, "", 0):
            return None
        try:
            return cls(kind, int(raw))
        except (TypeError, ValueError):
            return None

    def to_descriptor(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"approver_type": self.kind.value}
        for kind, key in _ID_KEYS.items():
            out[key] = self.id if kind == self.kind else None
        return out


class RequestApprovalAction(Base):
    __tablename__ = "request_approval_actions"

    STATUS_PENDING = "pending"
    STATUS_APPROVED = "approved"
    STATUS_REJECTED = "rejected"

    id = Column(Integer, primary_key=True)
    submission_id = Column(Integer, ForeignKey("request_submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    step_index = Column(Integer, nullable=False, index=True)
    status = Column(String(16), default=STATUS_PENDING, nullable=False)   # pending | approved | rejected
    approver_type = Column(String(16), nullable=False)                    # user | role | position
    approver_ref = Column(Integer, nullable=False)
    acted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    acted_at = Column(DateTime, nullable=True)
    meta = Column(JSON, default=dict)        # resolution provenance
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    submission = relationship("RequestSubmission", back_populates="approval_actions")
    actor = relationship("User", foreign_keys=[acted_by])

    @property
    def approver(self) -> ApproverRef:
        return ApproverRef(ApproverKind(self.approver_type), self.approver_ref)

    @approver.setter
    def approver(self, ref: ApproverRef) -> None:
        self.approver_type = ref.kind.value
        self.approver_ref = ref.id

    @property
    def approver_id(self) -> Optional[int]:
        return self.approver_ref if self.approver_type == ApproverKind.USER.value else None

    @property
    def approver_role_id(self) -> Optional[int]:
        return self.approver_ref if self.approver_type == ApproverKind.ROLE.value else None

    @property
    def approver_position_id(self) -> Optional[int]:
        return self.approver_ref if self.approver_type == ApproverKind.POSITION.value else None
