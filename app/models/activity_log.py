from sqlalchemy import Column, String, Uuid
from .base import BaseModel, JSONType


class ActivityLog(BaseModel):
    """Informational record of what an actor did to an attempt."""
    __tablename__ = "activity_log"

    actor_id = Column(Uuid(as_uuid=True), nullable=True, index=True)  # NULL = system
    action = Column(String(50), nullable=False)  # attempt_started, answers_saved, ...
    attempt_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    details = Column(JSONType, nullable=True)
