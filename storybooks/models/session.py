"""
Session model.

Server-side record behind the opaque token carried in the session cookie.
"""
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storybooks.models.base import Base, utcnow


class Session(Base):
    """
    Authenticated session.

    Valid strictly before expires_at; deleted on logout or once observed expired.
    """
    __tablename__ = "sessions"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )

    # Relationships
    user = relationship("User", back_populates="sessions")

    def __repr__(self):
        # never render the token
        return f"<Session(user_id={self.user_id}, expires_at={self.expires_at})>"
