"""
FastAPI application for Fleet Deployments.
"""

from __future__ import annotations

import asyncio
import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, File, Form, HTTPException, Response, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from .client.workflows import WorkflowsClient, WorkflowsError
from .config import get_settings
from .core.orchestrator import ArtifactOrchestrator
from .db.base import get_db, init_database
from .db.services import ArtifactService
from .errors import (
    DeploymentsError,
    MalformedRequestError,
    NotUniqueError,
    PayloadTooLargeError,
)
from .identity import AuthenticatedIdentity, require_identity
from .log import configure_logging
from .schemas.artifact import GenerateArtifactRequest
from .storage.base import FileStorage, create_file_storage
from .storage.local import STORAGE_ROUTE, LocalFileStorage

logger = structlog.get_logger()

ARTIFACTS_ROUTE = "/api/management/v1/deployments/artifacts"
ARTIFACTS_GENERATE_ROUTE = ARTIFACTS_ROUTE + "/generate"

# Collaborators shared by all requests, created in lifespan
file_storage: Optional[FileStorage] = None
workflows_client: Optional[WorkflowsClient] = None

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global file_storage, workflows_client

    configure_logging(settings)
    logger.info("service_starting", app=settings.app_name)

    try:
        await init_database()
        file_storage = create_file_storage(
            settings.storage_uri,
            public_url=settings.storage_public_url,
            secret_key=settings.secret_key,
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
        )
        workflows_client = WorkflowsClient(
            settings.workflows_url, timeout=settings.workflows_timeout_seconds
        )
        logger.info(
            "service_started",
            storage_uri=settings.storage_uri,
            workflows_url=settings.workflows_url,
        )
    except Exception as e:
        logger.error("service_start_failed", error=str(e))
        raise

    yield

    logger.info("service_stopping")
    if workflows_client:
        await workflows_client.close()
    logger.info("service_stopped")


app = FastAPI(
    title="Fleet Deployments",
    description="Artifact generation for device fleets",
    version=importlib.metadata.version("fleet-deployments"),
    lifespan=lifespan,
)


def get_file_storage() -> FileStorage:
    if file_storage is None:
        raise HTTPException(status_code=503, detail="Storage not initialized")
    return file_storage


def get_workflows_client() -> WorkflowsClient:
    if workflows_client is None:
        raise HTTPException(status_code=503, detail="Workflows client not initialized")
    return workflows_client


def get_orchestrator(
    db: Session = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
    workflows: WorkflowsClient = Depends(get_workflows_client),
) -> ArtifactOrchestrator:
    """Orchestrator wired to this request's database session."""
    return ArtifactOrchestrator(ArtifactService(db), storage, workflows, settings)


def _status_code_for(error: DeploymentsError) -> int:
    if isinstance(error, (MalformedRequestError, PayloadTooLargeError)):
        return 400
    if isinstance(error, NotUniqueError):
        return 409
    return 500


# Health and Info Endpoints
@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Liveness check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("fleet-deployments")}


@app.get("/health", tags=["system"])
async def health(
    db: Session = Depends(get_db),
    workflows: WorkflowsClient = Depends(get_workflows_client),
) -> Dict[str, Any]:
    """
    Readiness check: the database answers and the workflow engine is up.
    """
    checks: Dict[str, str] = {}

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("health_check_failed", component="database", error=str(e))
        checks["database"] = "error"

    try:
        await workflows.check_health()
        checks["workflows"] = "ok"
    except WorkflowsError as e:
        logger.error("health_check_failed", component="workflows", error=str(e))
        checks["workflows"] = "error"

    if any(value != "ok" for value in checks.values()):
        raise HTTPException(
            status_code=503, detail={"status": "unhealthy", "checks": checks}
        )
    return {"status": "ok", "checks": checks}


# Artifact Endpoints
@app.post(ARTIFACTS_GENERATE_ROUTE, status_code=201)
async def generate_artifact(
    response: Response,
    name: Optional[str] = Form(default=None),
    description: str = Form(default=""),
    device_types_compatible: Optional[List[str]] = Form(default=None),
    type: str = Form(default=""),
    args: str = Form(default=""),
    size: Optional[str] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    caller: AuthenticatedIdentity = Depends(require_identity),
    orchestrator: ArtifactOrchestrator = Depends(get_orchestrator),
) -> Dict[str, str]:
    """Upload a raw payload and start building an artifact from it.

    Answers as soon as the workflow engine accepted the build; the artifact
    itself appears later under the returned ID.
    """
    log = logger.bind(
        tenant_id=caller.identity.tenant or None, subject=caller.identity.subject
    )

    try:
        if file is None:
            raise MalformedRequestError()
        request = GenerateArtifactRequest.build(
            name=name,
            description=description,
            device_types_compatible=device_types_compatible or [],
            type=type,
            args=args,
            size=size if size is not None else file.size,
            payload=file.file,
            tenant_id=caller.identity.tenant or None,
            token=caller.token,
        )
        artifact_id = await asyncio.wait_for(
            orchestrator.generate_artifact(request),
            timeout=settings.generate_timeout_seconds,
        )
    except DeploymentsError as e:
        status_code = _status_code_for(e)
        if status_code >= 500:
            log.error("generate_artifact_failed", code=e.code, error=str(e))
        else:
            log.info("generate_artifact_rejected", code=e.code, error=str(e))
        raise HTTPException(status_code=status_code, detail=e.to_dict())
    except asyncio.TimeoutError:
        log.error(
            "generate_artifact_timeout", timeout=settings.generate_timeout_seconds
        )
        raise HTTPException(
            status_code=504,
            detail={
                "error": {
                    "code": "DEADLINE_EXCEEDED",
                    "message": "Artifact generation timed out",
                }
            },
        )

    response.headers["Location"] = f"{ARTIFACTS_ROUTE}/{artifact_id}"
    return {"id": artifact_id}


# Internal storage endpoints; only file:// storage signs links pointing here
def _local_storage(
    key: str, method: str, expires: int, signature: str, storage: FileStorage
) -> LocalFileStorage:
    if not isinstance(storage, LocalFileStorage):
        raise HTTPException(status_code=404, detail="Not found")
    if not storage.verify(key, method, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    return storage


@app.get(STORAGE_ROUTE + "/{key}")
async def download_object(
    key: str,
    expires: int,
    signature: str,
    storage: FileStorage = Depends(get_file_storage),
) -> FileResponse:
    """Serve a stored payload to the holder of a signed GET link."""
    local = _local_storage(key, "GET", expires, signature, storage)
    try:
        path = local.path_for(key)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path, media_type=settings.upload_content_type)


@app.delete(STORAGE_ROUTE + "/{key}", status_code=204)
async def delete_object(
    key: str,
    expires: int,
    signature: str,
    storage: FileStorage = Depends(get_file_storage),
) -> Response:
    """Delete a stored payload for the holder of a signed DELETE link."""
    local = _local_storage(key, "DELETE", expires, signature, storage)
    try:
        await local.delete(key)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")
    logger.info("storage_object_deleted_by_link", key=key)
    return Response(status_code=204)
