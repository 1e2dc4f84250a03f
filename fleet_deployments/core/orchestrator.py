"""
Artifact generation orchestrator.

Turns a raw uploaded payload into a submitted build: checks that the artifact
is unique, stores the payload, signs GET and DELETE links for it and hands
the build request to the workflow engine. The build itself happens out of
process; this component's job ends once the workflow engine accepted the
request.

Stages and what a failure at each stage leaves behind:

    uniqueness    nothing written                  -> raise
    allocate_id   cannot fail
    upload        nothing durable written          -> raise
    get_link      payload stored                   -> delete payload, raise
    delete_link   payload stored                   -> delete payload, raise
    submit        payload stored                   -> delete payload, raise

A cancelled upload is cleaned up by the storage backend itself; the saga only
compensates steps that completed.

Nothing is retried here. Retrying a whole saga is the caller's decision.
"""

import asyncio
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

import structlog

from ..client.workflows import WorkflowsClient
from ..config import Settings, get_settings
from ..db.services import MetadataStore
from ..errors import (
    DeleteLinkError,
    DeploymentsError,
    GetLinkError,
    MalformedRequestError,
    NotUniqueError,
    PayloadTooLargeError,
    UniquenessCheckError,
    UploadError,
    WorkflowSubmissionError,
)
from ..schemas.artifact import GenerateArtifactMessage, GenerateArtifactRequest
from ..storage.base import FileStorage
from .saga import Saga, SagaStage

logger = structlog.get_logger()


class ArtifactOrchestrator:
    """
    Runs one artifact generation saga per call.

    Holds no per-request state: every call builds its own saga and context,
    so one instance may serve concurrent requests.
    """

    def __init__(
        self,
        store: MetadataStore,
        file_storage: FileStorage,
        workflows: WorkflowsClient,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.file_storage = file_storage
        self.workflows = workflows
        self.max_image_size = settings.max_image_size
        self.link_expire = timedelta(
            seconds=settings.image_generation_link_expire_seconds
        )
        self.upload_content_type = settings.upload_content_type

    async def generate_artifact(
        self, request: Optional[GenerateArtifactRequest]
    ) -> str:
        """Run the saga and return the new artifact ID.

        Raises:
            MalformedRequestError: Missing request or payload
            PayloadTooLargeError: Declared size above the configured maximum
            DeploymentsError: Any later stage failure (see errors module)
        """
        if request is None or request.payload is None:
            raise MalformedRequestError()
        if request.size > self.max_image_size:
            raise PayloadTooLargeError()

        log = logger.bind(tenant_id=request.tenant_id, artifact_name=request.name)
        saga = self._build_saga()
        context: Dict[str, Any] = {"request": request}

        try:
            await saga.run(context)
        except DeploymentsError as e:
            outcome = saga.outcome
            log.error(
                "artifact_generation_failed",
                artifact_id=context.get("artifact_id"),
                stage=outcome.stage.value,
                step=outcome.failed_step,
                code=e.code,
                error=str(e),
                compensation_failed=bool(outcome.compensation_errors),
                steps=saga.get_status()["steps"],
            )
            raise
        except asyncio.CancelledError:
            log.warning(
                "artifact_generation_cancelled",
                artifact_id=context.get("artifact_id"),
                stage=saga.outcome.stage.value if saga.outcome else saga.stage.value,
            )
            raise

        artifact_id = context["artifact_id"]
        log.info("artifact_generation_submitted", artifact_id=artifact_id)
        return artifact_id

    def _build_saga(self) -> Saga:
        return (
            Saga("generate_artifact", start=SagaStage.VALIDATED)
            .add_step(
                "uniqueness",
                self._check_unique,
                reaches=SagaStage.UNIQUE,
                error=UniquenessCheckError,
            )
            .add_step("allocate_id", self._allocate_id)
            .add_step(
                "upload",
                self._upload,
                reaches=SagaStage.UPLOADED,
                compensation=self._delete_upload,
                error=UploadError,
            )
            .add_step(
                "get_link",
                self._get_link,
                reaches=SagaStage.HAS_GET_LINK,
                error=GetLinkError,
            )
            .add_step(
                "delete_link",
                self._delete_link,
                reaches=SagaStage.HAS_DELETE_LINK,
                error=DeleteLinkError,
            )
            .add_step(
                "submit",
                self._submit,
                reaches=SagaStage.SUBMITTED,
                error=WorkflowSubmissionError,
            )
        )

    async def _check_unique(self, context: Dict[str, Any]) -> None:
        request: GenerateArtifactRequest = context["request"]
        unique = await self.store.is_artifact_unique(
            request.name,
            request.device_types_compatible,
            tenant_id=request.tenant_id,
        )
        if not unique:
            raise NotUniqueError()

    async def _allocate_id(self, context: Dict[str, Any]) -> None:
        context["artifact_id"] = str(uuid.uuid4())

    async def _upload(self, context: Dict[str, Any]) -> None:
        request: GenerateArtifactRequest = context["request"]
        await self.file_storage.upload_artifact(
            context["artifact_id"],
            request.size,
            request.payload,
            self.upload_content_type,
        )

    async def _delete_upload(self, context: Dict[str, Any]) -> None:
        await self.file_storage.delete(context["artifact_id"])

    async def _get_link(self, context: Dict[str, Any]) -> None:
        context["get_link"] = await self.file_storage.get_request(
            context["artifact_id"], self.link_expire
        )

    async def _delete_link(self, context: Dict[str, Any]) -> None:
        context["delete_link"] = await self.file_storage.delete_request(
            context["artifact_id"], self.link_expire
        )

    async def _submit(self, context: Dict[str, Any]) -> None:
        message = GenerateArtifactMessage.from_request(
            context["request"],
            artifact_id=context["artifact_id"],
            get_link=context["get_link"],
            delete_link=context["delete_link"],
        )
        context["message"] = message
        await self.workflows.start_generate_artifact(message)
