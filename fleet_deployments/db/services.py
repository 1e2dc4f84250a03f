"""
Database services for Fleet Deployments.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from .models import ArtifactDeviceTypeModel, ArtifactModel


class MetadataStore(ABC):
    """Artifact metadata as seen by the generation saga."""

    @abstractmethod
    async def is_artifact_unique(
        self,
        name: str,
        device_types: Sequence[str],
        tenant_id: Optional[str] = None,
    ) -> bool:
        """Return True when no artifact shares `name` and any of `device_types`.

        Query errors are raised, never reported as "not unique".
        """
        pass


class ArtifactService(MetadataStore):
    """Service for managing artifacts in the database."""

    def __init__(self, db: Session):
        self.db = db

    async def is_artifact_unique(
        self,
        name: str,
        device_types: Sequence[str],
        tenant_id: Optional[str] = None,
    ) -> bool:
        # Session I/O is blocking
        return await asyncio.to_thread(
            self._is_artifact_unique, name, list(device_types), tenant_id
        )

    def _is_artifact_unique(
        self, name: str, device_types: Sequence[str], tenant_id: Optional[str]
    ) -> bool:
        query = (
            self.db.query(ArtifactModel.id)
            .join(ArtifactModel.device_types)
            .filter(ArtifactModel.name == name)
            .filter(ArtifactDeviceTypeModel.device_type.in_(device_types))
        )
        if tenant_id:
            query = query.filter(ArtifactModel.tenant_id == tenant_id)
        else:
            query = query.filter(ArtifactModel.tenant_id.is_(None))

        return query.first() is None

    def create_artifact(
        self,
        artifact_id: str,
        name: str,
        device_types: Sequence[str],
        size: int = 0,
        description: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> ArtifactModel:
        """Persist an artifact record with its compatible device types.

        The generation saga never writes metadata; records are bound once the
        workflow engine built the artifact. This is the writer for that
        binding step and for seeding a database.
        """
        db_artifact = ArtifactModel(
            id=artifact_id,
            name=name,
            description=description,
            size=size,
            tenant_id=tenant_id or None,
            device_types=[
                ArtifactDeviceTypeModel(device_type=device_type)
                for device_type in dict.fromkeys(device_types)
            ],
        )

        self.db.add(db_artifact)
        self.db.commit()
        self.db.refresh(db_artifact)
        return db_artifact
