"""
SQLAlchemy models for Fleet Deployments.
"""

from sqlalchemy import (
    BigInteger, Column, DateTime, ForeignKey, Index, String, Text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


class ArtifactModel(Base):
    """SQLAlchemy model for artifacts."""

    __tablename__ = "artifacts"

    # Primary fields
    id = Column(String(36), primary_key=True)
    name = Column(String(4096), nullable=False)
    description = Column(Text, nullable=True)
    size = Column(BigInteger, nullable=False, default=0)

    # Multi-tenant deployments only
    tenant_id = Column(String(128), nullable=True, index=True)

    # Timestamps
    modified = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    device_types = relationship(
        "ArtifactDeviceTypeModel",
        back_populates="artifact",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_artifacts_tenant_name", "tenant_id", "name"),
    )

    @property
    def device_types_compatible(self):
        return [dt.device_type for dt in self.device_types]


class ArtifactDeviceTypeModel(Base):
    """One compatible device type of an artifact."""

    __tablename__ = "artifact_device_types"

    artifact_id = Column(
        String(36),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    device_type = Column(String(4096), primary_key=True)

    artifact = relationship("ArtifactModel", back_populates="device_types")

    __table_args__ = (
        Index("ix_artifact_device_types_device_type", "device_type"),
    )
