"""
ServiceRequest model: the tenant-scoped business subject.
"""
from datetime import datetime
from sqlalchemy import CheckConstraint, String, Text, ForeignKey, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenantdesk.core.database.base import Base, TimestampMixin
from tenantdesk.utils import generate_ulid


STATUSES = ("OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED")
PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")


class ServiceRequest(Base, TimestampMixin):
    """
    A support/service request raised inside one organization.

    Attributes:
        status: OPEN | IN_PROGRESS | RESOLVED | CLOSED
        priority: LOW | MEDIUM | HIGH | URGENT
        organization_id: Owning tenant; every query on this table is scoped by it
        internal_notes: Visible to organization admins and global admins only
    """
    __tablename__ = "service_requests"
    __table_args__ = (
        Index("ix_service_requests_org_created", "organization_id", "created_at"),
        CheckConstraint(f"status IN {STATUSES}", name="ck_service_requests_status"),
        CheckConstraint(f"priority IN {PRIORITIES}", name="ck_service_requests_priority"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN", index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="MEDIUM")
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    created_by_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=False, index=True
    )
    assigned_to_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by = relationship("User", foreign_keys=[created_by_id], lazy="selectin")
    assigned_to = relationship("User", foreign_keys=[assigned_to_id], lazy="selectin")

    def __repr__(self) -> str:
        return f"<ServiceRequest(id={self.id}, org_id={self.organization_id}, status={self.status})>"
