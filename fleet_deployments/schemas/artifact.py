from __future__ import annotations

from datetime import timedelta
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, constr

from ..errors import MalformedRequestError


class GenerateArtifactRequest(BaseModel):
    """
    Artifact generation request.

    Built by the HTTP layer (or the CLI) from the multipart form, the decoded
    identity and the bearer token. The orchestrator only ever reads it; the
    model is frozen once validation succeeds.
    """

    model_config = ConfigDict(frozen=True)

    name: constr(min_length=1, max_length=4096)
    description: constr(max_length=4096) = ""
    device_types_compatible: Tuple[constr(min_length=1, max_length=4096), ...] = Field(
        min_length=1
    )
    size: int = Field(ge=0)
    type: str = ""
    args: str = ""

    # Untrusted stream; never read beyond `size` bytes.
    payload: Optional[Any] = Field(default=None, exclude=True, repr=False)

    # Filled from the caller's identity, never inferred by the orchestrator.
    tenant_id: Optional[str] = None
    token: str = Field(default="", repr=False)

    @classmethod
    def build(cls, **fields: Any) -> "GenerateArtifactRequest":
        """Validate raw fields, raising MalformedRequestError on schema errors."""
        try:
            return cls(**fields)
        except ValidationError as e:
            raise MalformedRequestError(
                f"Multipart upload message malformed: {_first_error(e)}"
            ) from e


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


class SignedLink(BaseModel):
    """Time-bounded capability for one HTTP operation on one storage key."""

    uri: str
    expire: timedelta
    method: Literal["GET", "DELETE"] = "GET"


class GenerateArtifactMessage(BaseModel):
    """Build request submitted to the workflow engine."""

    name: str
    description: str = ""
    size: int
    device_types_compatible: List[str]
    type: str = ""
    args: str = ""
    artifact_id: str
    get_artifact_uri: str
    delete_artifact_uri: str
    tenant_id: str = ""
    token: str = ""

    @classmethod
    def from_request(
        cls,
        request: GenerateArtifactRequest,
        artifact_id: str,
        get_link: SignedLink,
        delete_link: SignedLink,
    ) -> "GenerateArtifactMessage":
        return cls(
            name=request.name,
            description=request.description,
            size=request.size,
            device_types_compatible=list(request.device_types_compatible),
            type=request.type,
            args=request.args,
            artifact_id=artifact_id,
            get_artifact_uri=get_link.uri,
            delete_artifact_uri=delete_link.uri,
            tenant_id=request.tenant_id or "",
            token=request.token,
        )
