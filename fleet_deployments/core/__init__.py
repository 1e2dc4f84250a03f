"""Saga runner and the artifact generation orchestrator built on it."""

from .orchestrator import ArtifactOrchestrator
from .saga import Saga, SagaOutcome, SagaStage, SagaStep, StepStatus

__all__ = [
    "ArtifactOrchestrator",
    "Saga",
    "SagaOutcome",
    "SagaStage",
    "SagaStep",
    "StepStatus",
]
