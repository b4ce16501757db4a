import enum
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cardflow.db.base import Base


class SessionStatus(str, enum.Enum):  # a session only ever moves forward
    ACTIVE = "active"
    COMPLETED = "completed"


class FormTemplate(Base):  # the authored form: flat schema, optional graph, scoring config
    __tablename__ = "form_templates"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, default="")

    # JSON blobs are stored in wire (camelCase) form and validated on the way in
    schema = Column(JSON, nullable=False, default=list)
    graph = Column(JSON, nullable=True)
    profile_config = Column(JSON, nullable=True)
    success_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    sessions = relationship("FormSession", back_populates="form", cascade="all, delete-orphan")


class FormSession(Base):  # one respondent's in-progress pass through a form
    __tablename__ = "form_sessions"

    token = Column(String(64), primary_key=True)
    form_id = Column(String(64), ForeignKey("form_templates.id"), nullable=False, index=True)

    status = Column(Enum(SessionStatus), nullable=False, default=SessionStatus.ACTIVE)
    current_card_index = Column(Integer, nullable=False, default=0)
    partial_data = Column(JSON, nullable=False, default=dict)

    client_id = Column(String(128), nullable=True)  # whoever created it; used for rate limiting

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    form = relationship("FormTemplate", back_populates="sessions")


class FormSubmission(Base):  # append-only: the final answers
    __tablename__ = "form_submissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    form_id = Column(String(64), ForeignKey("form_templates.id"), nullable=False, index=True)
    session_token = Column(String(64), nullable=True)

    answers = Column(JSON, nullable=False, default=dict)
    submitted_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CardTimeEvent(Base):  # append-only dwell-time telemetry
    __tablename__ = "card_time_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    form_id = Column(String(64), nullable=False, index=True)
    session_token = Column(String(64), nullable=False, index=True)
    card_id = Column(String(128), nullable=False)
    time_seconds = Column(Integer, nullable=False)

    payload = Column(JSON, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
