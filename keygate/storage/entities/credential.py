"""WebAuthn credential entity model.

Stores WebAuthn credential public keys for passkey authentication.
Each row represents one registered authenticator device.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keygate.storage.models import Base, TimestampMixin

MAX_SIGN_COUNT = 2**32 - 1


class WebAuthnCredential(Base, TimestampMixin):
    """Stored WebAuthn credential for passkey authentication.

    The credential ID is unique across all users, which is what allows
    login by credential ID without a username.
    """

    __tablename__ = "webauthn_credential"
    __table_args__ = (
        Index("ix_webauthn_credential_credential_id", "credential_id", unique=True),
        Index("ix_webauthn_credential_user_id", "user_id"),
        CheckConstraint(
            f"sign_count >= 0 AND sign_count <= {MAX_SIGN_COUNT}",
            name="sign_count_range",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # WebAuthn credential data
    credential_id: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        doc="WebAuthn credential ID (unique per authenticator)",
    )
    public_key: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        doc="COSE public key bytes for signature verification",
    )
    sign_count: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        doc="Signature counter for replay and clone detection",
    )
    transports: Mapped[list | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
        doc='Authenticator transports (e.g. ["internal", "hybrid"])',
    )
    device_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="single_device",
        doc="single_device or multi_device",
    )
    backed_up: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="When this credential was last used to authenticate",
    )

    user = relationship("User", back_populates="credentials")

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<WebAuthnCredential(id={self.id!r}, user_id={self.user_id!r})>"
