"""
Database package for Fleet Deployments.
"""

from .base import Base, get_db, get_engine, init_database, session_scope
from .models import ArtifactDeviceTypeModel, ArtifactModel
from .services import ArtifactService, MetadataStore

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "init_database",
    "session_scope",
    "ArtifactModel",
    "ArtifactDeviceTypeModel",
    "ArtifactService",
    "MetadataStore",
]
