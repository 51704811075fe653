"""Core SQLAlchemy models (2.x style) for the mirrored catalog schema.

Every synced entity carries the upstream identifier in ``external_id``
(unique, the only upsert key) next to a local integer primary key that
stays stable across re-syncs.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class SyncedRecordMixin:
    """Columns shared by every table fed from the upstream catalog."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


class Dataset(SyncedRecordMixin, Base):
    """Catalog entries (conjuntos de dados)."""
    __tablename__ = "anvisa_datasets"

    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    organization: Mapped[str | None] = mapped_column(String(255), index=True)
    category: Mapped[str | None] = mapped_column(String(255), index=True)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    created_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resource_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="ativo", nullable=False, index=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    # Relationships
    resources: Mapped[list[Resource]] = relationship("Resource", back_populates="dataset")

    __table_args__ = (
        Index("ix_anvisa_datasets_updated_date", "updated_date"),
    )


class Resource(SyncedRecordMixin, Base):
    """Downloadable files inside a dataset (recursos)."""
    __tablename__ = "anvisa_resources"

    dataset_id: Mapped[int] = mapped_column(
        ForeignKey("anvisa_datasets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    format: Mapped[str | None] = mapped_column(String(50))
    url: Mapped[str | None] = mapped_column(Text)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger)
    file_hash: Mapped[str | None] = mapped_column(String(255))
    last_modified: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="ativo", nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    # Relationship
    dataset: Mapped[Dataset] = relationship("Dataset", back_populates="resources")


class Organization(SyncedRecordMixin, Base):
    """Data-publishing organizations."""
    __tablename__ = "anvisa_organizations"

    name: Mapped[str | None] = mapped_column(String(500), index=True)
    acronym: Mapped[str | None] = mapped_column(String(50))
    description: Mapped[str | None] = mapped_column(Text)
    organization_type: Mapped[str | None] = mapped_column(String(100), index=True)
    sphere: Mapped[str | None] = mapped_column(String(100))
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    website: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="ativo", nullable=False, index=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    # Relationship
    detail: Mapped[OrganizationDetail | None] = relationship(
        "OrganizationDetail",
        back_populates="organization",
        uselist=False,
    )


class OrganizationDetail(SyncedRecordMixin, Base):
    """1:1 extension of an organization."""
    __tablename__ = "anvisa_organization_details"

    organization_id: Mapped[int] = mapped_column(
        ForeignKey("anvisa_organizations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    area_of_activity: Mapped[str | None] = mapped_column(Text)
    responsible: Mapped[str | None] = mapped_column(String(255))
    responsible_role: Mapped[str | None] = mapped_column(String(255))
    dataset_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    extra_data: Mapped[dict | None] = mapped_column(JSON)

    # Relationship
    organization: Mapped[Organization] = relationship("Organization", back_populates="detail")


class LegalComplianceRecord(SyncedRecordMixin, Base):
    """Regulations linked to datasets (observância legal)."""
    __tablename__ = "anvisa_legal_compliance"

    title: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    compliance_type: Mapped[str | None] = mapped_column(String(100), index=True)
    legal_norm: Mapped[str | None] = mapped_column(String(500))
    legal_norm_url: Mapped[str | None] = mapped_column(Text)
    effective_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="ativo", nullable=False, index=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)


class SustainabilityGoal(SyncedRecordMixin, Base):
    """Sustainable development goal references (ODS)."""
    __tablename__ = "anvisa_sustainability_goals"

    name: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    goal_number: Mapped[int | None] = mapped_column(Integer)
    targets: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    indicators: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)


class FormatRegistryEntry(SyncedRecordMixin, Base):
    """File-format descriptors."""
    __tablename__ = "anvisa_formats"

    name: Mapped[str | None] = mapped_column(String(100))
    extension: Mapped[str | None] = mapped_column(String(50))
    mime_type: Mapped[str | None] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)


class DataRequest(SyncedRecordMixin, Base):
    """Public information requests (solicitações)."""
    __tablename__ = "anvisa_data_requests"

    protocol: Mapped[str | None] = mapped_column(String(100), index=True)
    title: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    requester: Mapped[str | None] = mapped_column(String(255))
    request_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(50), default="pendente", nullable=False)
    response_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    category: Mapped[str | None] = mapped_column(String(255))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)


class Theme(SyncedRecordMixin, Base):
    """Catalog themes (temas)."""
    __tablename__ = "anvisa_themes"

    name: Mapped[str | None] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    parent_category: Mapped[str | None] = mapped_column(String(255))
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    color_hex: Mapped[str | None] = mapped_column(String(20))
    icon: Mapped[str | None] = mapped_column(String(100))
    dataset_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)


class Reuse(SyncedRecordMixin, Base):
    """Third-party reuses of catalog data."""
    __tablename__ = "anvisa_reuses"

    title: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    author: Mapped[str | None] = mapped_column(String(255))
    author_organization: Mapped[str | None] = mapped_column(String(255))
    url: Mapped[str | None] = mapped_column(Text)
    reuse_type: Mapped[str | None] = mapped_column(String(100), index=True)
    category: Mapped[str | None] = mapped_column(String(255), index=True)
    datasets_used: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="ativo", nullable=False, index=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    # Relationship
    detail: Mapped[ReuseDetail | None] = relationship("ReuseDetail", back_populates="reuse", uselist=False)


class ReuseDetail(SyncedRecordMixin, Base):
    """1:1 extension of a reuse."""
    __tablename__ = "anvisa_reuse_details"

    reuse_id: Mapped[int] = mapped_column(
        ForeignKey("anvisa_reuses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    technologies: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    target_audience: Mapped[str | None] = mapped_column(Text)
    estimated_impact: Mapped[str | None] = mapped_column(Text)
    metrics: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    user_feedback: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # Relationship
    reuse: Mapped[Reuse] = relationship("Reuse", back_populates="detail")


class PendingReuseApproval(SyncedRecordMixin, Base):
    """Reuses awaiting moderation (homologação)."""
    __tablename__ = "anvisa_pending_reuses"

    title: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)
    author: Mapped[str | None] = mapped_column(String(255))
    submission_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approval_status: Mapped[str] = mapped_column(String(50), default="pendente", nullable=False)
    evaluation_notes: Mapped[str | None] = mapped_column(Text)
    evaluator: Mapped[str | None] = mapped_column(String(255))
    evaluation_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)


class IntegrationConfig(Base):
    """Upstream integration settings (one row per integration)."""
    __tablename__ = "api_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    integration_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    base_url: Mapped[str] = mapped_column(Text, nullable=False)
    api_key: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sync_frequency_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    last_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
