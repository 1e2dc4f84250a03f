"""Test configuration and fixtures."""

import base64
import io
import json
from datetime import timedelta
from typing import Any, Callable, Dict
from unittest.mock import AsyncMock

import pytest

from fleet_deployments.client.workflows import WorkflowsClient
from fleet_deployments.config import Settings
from fleet_deployments.core.orchestrator import ArtifactOrchestrator
from fleet_deployments.db.services import MetadataStore
from fleet_deployments.schemas.artifact import GenerateArtifactRequest, SignedLink
from fleet_deployments.storage.base import FileStorage

PAYLOAD = b"0123456789"


def make_token(claims: Dict[str, Any]) -> str:
    """Build an unsigned JWT carrying `claims`."""

    def segment(data: Dict[str, Any]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("utf-8")

    return ".".join([segment({"alg": "HS256", "typ": "JWT"}), segment(claims), "sig"])


@pytest.fixture
def settings() -> Settings:
    """Settings with a small size limit."""
    return Settings(max_image_size=1024, image_generation_link_expire_seconds=3600)


@pytest.fixture
def store() -> AsyncMock:
    """Metadata store reporting every artifact as unique."""
    mock = AsyncMock(spec=MetadataStore)
    mock.is_artifact_unique.return_value = True
    return mock


@pytest.fixture
def file_storage() -> AsyncMock:
    """Storage issuing fixed links."""
    mock = AsyncMock(spec=FileStorage)
    mock.get_request.return_value = SignedLink(
        uri="https://storage/get", expire=timedelta(hours=1), method="GET"
    )
    mock.delete_request.return_value = SignedLink(
        uri="https://storage/delete", expire=timedelta(hours=1), method="DELETE"
    )
    return mock


@pytest.fixture
def workflows() -> AsyncMock:
    """Workflow engine accepting every request."""
    return AsyncMock(spec=WorkflowsClient)


@pytest.fixture
def orchestrator(store, file_storage, workflows, settings) -> ArtifactOrchestrator:
    return ArtifactOrchestrator(store, file_storage, workflows, settings)


@pytest.fixture
def make_request() -> Callable[..., GenerateArtifactRequest]:
    """Factory for valid generation requests with optional overrides."""

    def factory(**overrides: Any) -> GenerateArtifactRequest:
        fields: Dict[str, Any] = {
            "name": "artifact",
            "description": "description",
            "device_types_compatible": ["dt1", "dt2"],
            "size": len(PAYLOAD),
            "type": "single_file",
            "args": "",
            "payload": io.BytesIO(PAYLOAD),
            "token": "token",
        }
        fields.update(overrides)
        return GenerateArtifactRequest.build(**fields)

    return factory


@pytest.fixture
def make_jwt() -> Callable[[Dict[str, Any]], str]:
    return make_token
