from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Numeric, Boolean, Text, Table, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import date, datetime
from app.core.database import Base

training_allowed_faculties = Table(
    "training_allowed_faculties",
    Base.metadata,
    Column("training_id", Integer, ForeignKey("trainings.id", ondelete="CASCADE"), primary_key=True),
    Column("faculty_id", Integer, ForeignKey("faculties.id", ondelete="CASCADE"), primary_key=True),
)

training_allowed_departments = Table(
    "training_allowed_departments",
    Base.metadata,
    Column("training_id", Integer, ForeignKey("trainings.id", ondelete="CASCADE"), primary_key=True),
    Column("department_id", Integer, ForeignKey("departments.id", ondelete="CASCADE"), primary_key=True),
)

training_allowed_positions = Table(
    "training_allowed_positions",
    Base.metadata,
    Column("training_id", Integer, ForeignKey("trainings.id", ondelete="CASCADE"), primary_key=True),
    Column("position_id", Integer, ForeignKey("positions.id", ondelete="CASCADE"), primary_key=True),
)

class Training(Base):
    __tablename__ = "trainings"
    id = Column(Integer, primary_key=True)
    reference_number = Column(String(64), unique=True, nullable=True)
    title = Column(String(255), nullable=False)
    date_from = Column(Date, nullable=True)
    date_to = Column(Date, nullable=True)
    hours = Column(Numeric(6, 2), nullable=True)
    facilitator = Column(String(255), nullable=True)
    venue = Column(String(255), nullable=True)
    capacity = Column(Integer, nullable=True)           # None = unlimited
    remarks = Column(Text, nullable=True)
    requires_approval = Column(Boolean, default=False, nullable=False)
    request_type_id = Column(Integer, ForeignKey("request_types.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    request_type = relationship("RequestType")
    allowed_faculties = relationship("Faculty", secondary=training_allowed_faculties)
    allowed_departments = relationship("Department", secondary=training_allowed_departments)
    allowed_positions = relationship("Position", secondary=training_allowed_positions)
    applications = relationship("TrainingApplication", back_populates="training", cascade="all, delete-orphan")

class TrainingApplication(Base):
    __tablename__ = "training_applications"
    __table_args__ = (UniqueConstraint("employee_id", "training_id", name="uq_training_application_employee"),)

    STATUS_SIGNED_UP = "Signed Up"
    STATUS_APPROVED = "Approved"
    STATUS_REJECTED = "Rejected"
    ACTIVE_STATUSES = (STATUS_SIGNED_UP, STATUS_APPROVED)
    # shown, never stored
    DISPLAY_ONGOING = "Ongoing"
    DISPLAY_COMPLETED = "Completed"

    id = Column(Integer, primary_key=True)
    employee_id = Column(String(32), ForeignKey("employees.id"), nullable=False, index=True)
    training_id = Column(Integer, ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(32), default=STATUS_SIGNED_UP, nullable=False)
    re_apply_count = Column(Integer, default=0, nullable=False)
    request_submission_id = Column(Integer, ForeignKey("request_submissions.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    training = relationship("Training", back_populates="applications")
    employee = relationship("Employee")
    request_submission = relationship("RequestSubmission")

    def display_status(self, today: date) -> str:
        """A signed-up application reads as Ongoing during the training and Completed after it."""
        if self.status != self.STATUS_SIGNED_UP or self.training is None:
            return self.status
        start, end = self.training.date_from, self.training.date_to
        if end is not None and end < today:
            return self.DISPLAY_COMPLETED
        if start is not None and end is not None and start <= today <= end:
            return self.DISPLAY_ONGOING
        return self.status
