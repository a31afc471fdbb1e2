from __future__ import annotations
import uuid
from typing import Any, Dict, List

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base
from app.models.approval import ApproverRef

FIELD_TYPES = ("text", "textarea", "number", "date", "checkbox", "dropdown", "radio", "file")

class RequestType(Base):
    __tablename__ = "request_types"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    has_fulfillment = Column(Boolean, default=False, nullable=False)
    approval_steps = Column(JSON, default=list)     # [{"name":..., "sort_order":..., "approvers":[{approver_type, approver_id|...}]}]
    is_published = Column(Boolean, default=False, nullable=False)
    published_at = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    fields = relationship(
        "RequestField",
        back_populates="request_type",
        order_by="RequestField.sort_order",
        cascade="all, delete-orphan",
    )

    def requires_fulfillment(self) -> bool:
        return bool(self.has_fulfillment)

    def steps(self) -> List[Dict[str, Any]]:
        """Ordered steps with approvers normalized to complete descriptors."""
        raw = list(self.approval_steps or [])
        ordered = sorted(enumerate(raw), key=lambda p: (p[1].get("sort_order", p[0]), p[0]))
        out: List[Dict[str, Any]] = []
        for _, step in ordered:
            step = dict(step)
            approvers = list(step.get("approvers") or [])
            # legacy single-approver steps carried the descriptor on the step itself
            if not approvers and step.get("approver_type"):
                approvers = [{
                    "approver_type": step.get("approver_type"),
                    "approver_id": step.get("approver_id"),
                    "approver_role_id": step.get("approver_role_id"),
                    "approver_position_id": step.get("approver_position_id"),
                }]
            normalized = []
            for a in approvers:
                ref = ApproverRef.from_descriptor(a)
                if ref is None:
                    continue
                normalized.append({"id": a.get("id") or uuid.uuid4().hex, **ref.to_descriptor()})
            step["approvers"] = normalized
            out.append(step)
        return out

class RequestField(Base):
    __tablename__ = "request_fields"
    id = Column(Integer, primary_key=True)
    request_type_id = Column(Integer, ForeignKey("request_types.id", ondelete="CASCADE"), nullable=False, index=True)
    field_key = Column(String(128), nullable=False)
    label = Column(String(255), nullable=False)
    field_type = Column(String(32), nullable=False, default="text")
    is_required = Column(Boolean, default=False, nullable=False)
    description = Column(Text, nullable=True)
    options = Column(JSON, nullable=True)             # [{"label":..., "value":...}] for dropdown/radio
    sort_order = Column(Integer, default=0, nullable=False)

    request_type = relationship("RequestType", back_populates="fields")
    # answers go with the field; the database cascade removes them
    answers = relationship("RequestAnswer", back_populates="field", cascade="all, delete-orphan", passive_deletes=True)

    def choice_values(self) -> List[str]:
        return [str(o.get("value")) for o in (self.options or []) if isinstance(o, dict) and o.get("value")]
