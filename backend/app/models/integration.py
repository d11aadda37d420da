"""Third-party storage integration model."""

from datetime import datetime
from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, UniqueConstraint
from app.database import Base


class Integration(Base):
    """Per-user connection to an external storage provider.

    ``settings`` holds the provider options and OAuth tokens; it is read and
    written through ``app.schemas.integration.IntegrationSettings``.
    """

    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_integration_user_provider"),)

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    provider = Column(String(32), nullable=False)  # google_drive, dropbox, onedrive, box
    status = Column(String(20), nullable=False, default="disconnected")  # connected, disconnected
    settings = Column(JSON, nullable=False, default=dict)
    connected_at = Column(DateTime, nullable=True)
    last_sync = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Integration(id='{self.id}', provider='{self.provider}', status='{self.status}')>"
        )
