"""
Client for the workflow engine.

The engine runs the actual artifact build asynchronously; this client only
submits the build request and reports whether the engine accepted it.
"""

from typing import Optional

import httpx
import structlog

from ..schemas.artifact import GenerateArtifactMessage

logger = structlog.get_logger()

GENERATE_ARTIFACT_WORKFLOW = "generate_artifact"
URI_START_WORKFLOW = "/api/v1/workflow/{name}"
URI_HEALTH = "/api/v1/health"


class WorkflowsError(Exception):
    """Raised when the workflow engine rejects a request or cannot be reached."""


class WorkflowsClient:
    """
    HTTP client for the workflow engine.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def start_generate_artifact(self, message: GenerateArtifactMessage) -> None:
        """Start the generate_artifact workflow.

        Only 201 Created counts as accepted; any other status is a failure.
        """
        await self._start_workflow(
            GENERATE_ARTIFACT_WORKFLOW, message.model_dump(mode="json")
        )

    async def _start_workflow(self, name: str, payload: dict) -> None:
        url = self.base_url + URI_START_WORKFLOW.format(name=name)
        try:
            response = await self.client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error("workflow_request_failed", workflow=name, error=str(e))
            raise WorkflowsError(f"failed to start workflow: {name}: {e}") from e

        if response.status_code != httpx.codes.CREATED:
            logger.error(
                "workflow_rejected",
                workflow=name,
                status_code=response.status_code,
                body=response.text[:512],
            )
            raise WorkflowsError(f"failed to start workflow: {name}")

        logger.info("workflow_started", workflow=name)

    async def check_health(self) -> None:
        """Check the workflow engine is up; raises WorkflowsError otherwise."""
        try:
            response = await self.client.get(self.base_url + URI_HEALTH)
        except httpx.HTTPError as e:
            raise WorkflowsError(f"failed to check health: {e}") from e

        if response.status_code != httpx.codes.NO_CONTENT:
            raise WorkflowsError(
                f"health check returned unexpected status code: {response.status_code}"
            )
