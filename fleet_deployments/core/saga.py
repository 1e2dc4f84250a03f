"""
Saga runner.

A saga is an ordered list of steps, each an async action with an optional
compensating action. Steps run strictly in order; every step sees the shared
context dict and may add entries to it for the steps after it.

When step *i* fails, the compensations of the steps that already completed
run in reverse order, then the step's error is raised. A compensation that
fails itself is folded into the raised error as a CompensationFailedError
wrapping the error it was trying to clean up after.

Cancellation is not an error: compensations still run, failures among them
are logged, and the CancelledError propagates unchanged.

Context contract: ``context["artifact_id"]`` names the saga's subject and is
reported as the orphaned key when a compensation fails.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ..errors import CompensationFailedError, DeploymentsError

logger = structlog.get_logger()

Action = Callable[[Dict[str, Any]], Awaitable[Any]]
ErrorFactory = Callable[[Exception], DeploymentsError]


class SagaStage(Enum):
    """Progress of one artifact generation saga."""

    INIT = "init"
    VALIDATED = "validated"
    UNIQUE = "unique"
    UPLOADED = "uploaded"
    HAS_GET_LINK = "has_get_link"
    HAS_DELETE_LINK = "has_delete_link"
    SUBMITTED = "submitted"
    DONE = "done"
    COMPENSATING = "compensating"
    FAILED = "failed"


class StepStatus(Enum):
    """Individual step status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"


class SagaStep:
    """A single step in a saga."""

    def __init__(
        self,
        name: str,
        action: Action,
        reaches: Optional[SagaStage] = None,
        compensation: Optional[Action] = None,
        error: Optional[ErrorFactory] = None,
    ):
        """
        Args:
            name: Step name used in logs
            action: Coroutine function receiving the saga context
            reaches: Stage the saga is in once this step succeeded
            compensation: Undoes the action's durable side effect
            error: Wraps a collaborator exception into the stage's error
        """
        self.name = name
        self.action = action
        self.reaches = reaches
        self.compensation = compensation
        self.error = error
        self.status = StepStatus.PENDING
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None

    async def execute(self, context: Dict[str, Any]) -> Any:
        """Execute this step."""
        self.status = StepStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)
        try:
            result = await self.action(context)
        except BaseException:
            self.status = StepStatus.FAILED
            self.completed_at = datetime.now(timezone.utc)
            raise
        self.status = StepStatus.COMPLETED
        self.completed_at = datetime.now(timezone.utc)
        return result

    async def compensate(self, context: Dict[str, Any]) -> None:
        """Undo this step."""
        await self.compensation(context)
        self.status = StepStatus.COMPENSATED

    def wrap(self, exc: Exception) -> DeploymentsError:
        """Turn an exception raised by the action into this stage's error."""
        if isinstance(exc, DeploymentsError):
            return exc
        if self.error is not None:
            wrapped = self.error(exc)
        else:
            wrapped = DeploymentsError(str(exc))
        wrapped.__cause__ = exc
        return wrapped

    def get_status(self) -> Dict[str, Any]:
        """Get the current status of this step."""
        duration = None
        if self.started_at and self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "name": self.name,
            "status": self.status.value,
            "duration_seconds": duration,
        }


@dataclass
class SagaOutcome:
    """How a saga ended. Shapes the raised error and the final log line."""

    stage: SagaStage
    artifact_id: Optional[str] = None
    failed_step: Optional[str] = None
    error: Optional[BaseException] = None
    compensation_errors: List[BaseException] = field(default_factory=list)

    @property
    def compensation_error(self) -> Optional[BaseException]:
        return self.compensation_errors[0] if self.compensation_errors else None


class Saga:
    """Ordered steps with compensations, run once."""

    def __init__(self, name: str, start: SagaStage = SagaStage.INIT):
        self.name = name
        self.steps: List[SagaStep] = []
        self.stage = start
        self.outcome: Optional[SagaOutcome] = None
        self._compensation_errors: List[BaseException] = []

    def add_step(
        self,
        name: str,
        action: Action,
        reaches: Optional[SagaStage] = None,
        compensation: Optional[Action] = None,
        error: Optional[ErrorFactory] = None,
    ) -> "Saga":
        """Append a step; returns the saga for chaining."""
        self.steps.append(
            SagaStep(
                name=name,
                action=action,
                reaches=reaches,
                compensation=compensation,
                error=error,
            )
        )
        return self

    async def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """Run all steps in order and return the context.

        Raises:
            DeploymentsError: The failing stage's error, or a
                CompensationFailedError wrapping it
            asyncio.CancelledError: After compensation, when cancelled
        """
        if self.outcome is not None:
            raise RuntimeError(f"Saga {self.name} has already run")

        completed: List[SagaStep] = []
        for step in self.steps:
            log = logger.bind(
                saga=self.name, step=step.name, artifact_id=context.get("artifact_id")
            )
            try:
                await step.execute(context)
            except asyncio.CancelledError:
                log.warning("saga_step_cancelled", stage=self.stage.value)
                failed_at = self.stage
                await self._compensate(completed, context, None)
                self._finish(context, step, failed_at, None)
                raise
            except Exception as e:
                error = step.wrap(e)
                log.warning(
                    "saga_step_failed",
                    stage=self.stage.value,
                    code=error.code,
                    error=str(e),
                )
                failed_at = self.stage
                error = await self._compensate(completed, context, error)
                self._finish(context, step, failed_at, error)
                raise error

            completed.append(step)
            if step.reaches is not None:
                self.stage = step.reaches

        self.stage = SagaStage.DONE
        self.outcome = SagaOutcome(
            stage=SagaStage.DONE, artifact_id=context.get("artifact_id")
        )
        return context

    async def _compensate(
        self,
        completed: List[SagaStep],
        context: Dict[str, Any],
        error: Optional[DeploymentsError],
    ) -> Optional[DeploymentsError]:
        """Run compensations in reverse order, folding their failures into `error`."""
        self._compensation_errors = []
        pending = [step for step in reversed(completed) if step.compensation]
        if not pending:
            return error

        self.stage = SagaStage.COMPENSATING
        for step in pending:
            log = logger.bind(
                saga=self.name, step=step.name, artifact_id=context.get("artifact_id")
            )
            try:
                await step.compensate(context)
                log.info("compensation_completed")
            except Exception as e:
                self._compensation_errors.append(e)
                log.error("compensation_failed", error=str(e))
                if error is not None:
                    folded = CompensationFailedError(
                        e, error, orphaned_key=context.get("artifact_id")
                    )
                    folded.__cause__ = error
                    error = folded
        return error

    def _finish(
        self,
        context: Dict[str, Any],
        step: SagaStep,
        failed_at: SagaStage,
        error: Optional[BaseException],
    ) -> None:
        self.stage = SagaStage.FAILED
        self.outcome = SagaOutcome(
            stage=failed_at,
            artifact_id=context.get("artifact_id"),
            failed_step=step.name,
            error=error,
            compensation_errors=list(self._compensation_errors),
        )

    def get_status(self) -> Dict[str, Any]:
        """Get the current status of the saga."""
        return {
            "name": self.name,
            "stage": self.stage.value,
            "steps": [step.get_status() for step in self.steps],
        }
