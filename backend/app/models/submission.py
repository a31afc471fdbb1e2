from __future__ import annotations
import random, string
from typing import Any, Dict, List

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base
from app.models.approval import RequestApprovalAction

class RequestSubmission(Base):
    __tablename__ = "request_submissions"

    STATUS_PENDING = "pending"
    STATUS_APPROVED = "approved"
    STATUS_FULFILLMENT = "fulfillment"
    STATUS_COMPLETED = "completed"
    STATUS_REJECTED = "rejected"
    STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_FULFILLMENT, STATUS_COMPLETED, STATUS_REJECTED)

    id = Column(Integer, primary_key=True)
    reference_code = Column(String(32), unique=True, nullable=False, index=True)
    request_type_id = Column(Integer, ForeignKey("request_types.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(16), default=STATUS_PENDING, nullable=False, index=True)
    current_step_index = Column(Integer, nullable=True)
    approval_steps = Column(JSON, nullable=True)     # step definitions as they stood at submission
    approval_state = Column(JSON, default=dict)      # projection of the action rows, rebuilt on every change
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    fulfilled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    request_type = relationship("RequestType")
    user = relationship("User")
    answers = relationship("RequestAnswer", back_populates="submission", cascade="all, delete-orphan")
    approval_actions = relationship(
        "RequestApprovalAction",
        back_populates="submission",
        order_by=(RequestApprovalAction.step_index, RequestApprovalAction.id),
        cascade="all, delete-orphan",
    )
    fulfillment = relationship("RequestFulfillment", back_populates="submission", uselist=False, cascade="all, delete-orphan")

    def requires_fulfillment(self) -> bool:
        return bool(self.request_type and self.request_type.requires_fulfillment())

    def step_definitions(self) -> List[Dict[str, Any]]:
        if self.approval_steps is not None:
            return list(self.approval_steps)
        return self.request_type.steps() if self.request_type else []

    @staticmethod
    def generate_reference_code() -> str:
        suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
        return f"REQ-{datetime.utcnow():%Y%m%d}-{suffix}"

class RequestAnswer(Base):
    __tablename__ = "request_answers"
    id = Column(Integer, primary_key=True)
    submission_id = Column(Integer, ForeignKey("request_submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    field_id = Column(Integer, ForeignKey("request_fields.id", ondelete="CASCADE"), nullable=False, index=True)
    value = Column(Text, nullable=True)
    value_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    submission = relationship("RequestSubmission", back_populates="answers")
    field = relationship("RequestField", back_populates="answers")

class RequestFulfillment(Base):
    __tablename__ = "request_fulfillments"
    id = Column(Integer, primary_key=True)
    submission_id = Column(Integer, ForeignKey("request_submissions.id", ondelete="CASCADE"), nullable=False, unique=True)
    fulfilled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    file_path = Column(String(1024), nullable=True)
    original_filename = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    submission = relationship("RequestSubmission", back_populates="fulfillment")
    fulfiller = relationship("User")
