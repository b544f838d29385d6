"""User model."""

from sqlalchemy import CheckConstraint, Column, DateTime, String

from app.database import Base


class User(Base):
    """Application user."""

    __tablename__ = "user"
    __table_args__ = (
        CheckConstraint(
            "(reset_token IS NULL) = (reset_token_expires_at IS NULL)",
            name="ck_user_reset_token_pair",
        ),
    )

    id = Column(String(36), primary_key=True)
    name = Column(String(256), nullable=False)
    email = Column(String(256), unique=True, nullable=False, index=True)
    password_hash = Column(String(512), nullable=False)
    reset_token = Column(String(128), nullable=True, index=True)
    reset_token_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)
