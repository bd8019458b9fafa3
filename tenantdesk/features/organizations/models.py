"""
Organization models.

Organizations are the tenant boundary: every business row carries an
organization_id. Users join organizations through a Membership row holding
their organization role; a user has at most one membership per organization.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from tenantdesk.core.database.base import Base, TimestampMixin
from tenantdesk.utils import generate_ulid


class Organization(Base, TimestampMixin):
    """
    Organization (tenant).
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    invitations: Mapped[list["Invitation"]] = relationship(
        "Invitation",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r})>"


class Membership(Base, TimestampMixin):
    """
    A user's role inside one organization: owner, admin or member.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_membership_org_user"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")

    organization: Mapped["Organization"] = relationship(
        "Organization",
        back_populates="memberships",
        lazy="selectin"
    )
    user: Mapped["User"] = relationship("User", lazy="selectin")  # type: ignore

    def __repr__(self) -> str:
        return f"<Membership(org_id={self.organization_id}, user_id={self.user_id}, role={self.role})>"


class InvitationStatus(str, enum.Enum):
    """Status of organization invitations."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELED = "canceled"


class Invitation(Base, TimestampMixin):
    """
    Invitation for an email address to join an organization with a given role.
    """
    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")

    status: Mapped[InvitationStatus] = mapped_column(
        SQLEnum(InvitationStatus),
        default=InvitationStatus.PENDING,
        nullable=False,
        index=True
    )
    inviter_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_count: Mapped[int] = mapped_column(default=1, nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization",
        back_populates="invitations",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Invitation(id={self.id}, org_id={self.organization_id}, email={self.email!r}, status={self.status})>"
