"""User entity model.

The identity anchor. A row is written exactly once, by a successful
registration ceremony, and never mutated afterwards.
"""

from sqlalchemy import CheckConstraint, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keygate.storage.models import Base, CreatedAtMixin


class User(Base, CreatedAtMixin):
    """Registered user."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "length(username) >= 3 AND length(username) <= 30",
            name="username_length",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        doc="Case-sensitive, immutable username",
    )
    user_handle: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        unique=True,
        doc="Opaque WebAuthn user handle sent to authenticators",
    )

    credentials = relationship(
        "WebAuthnCredential",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<User(id={self.id!r}, username={self.username!r})>"
