"""
Fleet Deployments

Artifact generation for device fleets: turns an uploaded payload into a
deployable artifact by handing it to the workflow engine.
"""

import importlib.metadata

__version__ = importlib.metadata.version("fleet-deployments")

from .core.orchestrator import ArtifactOrchestrator
from .errors import (
    CompensationFailedError,
    DeploymentsError,
    MalformedRequestError,
    NotUniqueError,
    PayloadTooLargeError,
)
from .schemas.artifact import GenerateArtifactMessage, GenerateArtifactRequest

__all__ = [
    "ArtifactOrchestrator",
    "CompensationFailedError",
    "DeploymentsError",
    "GenerateArtifactMessage",
    "GenerateArtifactRequest",
    "MalformedRequestError",
    "NotUniqueError",
    "PayloadTooLargeError",
]
