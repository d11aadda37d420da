"""User model."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime
from app.database import Base


class User(Base):
    """Local mirror of the identity provider's user profile.

    The primary key is the provider-issued UUID carried in the ``sub`` claim
    of access tokens; passwords and sessions live with the provider.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', email='{self.email}')>"
