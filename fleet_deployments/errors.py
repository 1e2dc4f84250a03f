"""
Error taxonomy for artifact generation.

Every failure the orchestrator can report is one of the classes below. Each
carries a stable ``code`` for programmatic handling and a ``stage`` naming the
saga step that produced it.

Client errors (the request itself was rejected, nothing was written):
- MalformedRequestError, PayloadTooLargeError, NotUniqueError

System errors (a collaborator failed):
- UniquenessCheckError, UploadError: nothing to undo
- GetLinkError, DeleteLinkError, WorkflowSubmissionError: the uploaded
  object was deleted again
- CompensationFailedError: the delete failed too, the object may be orphaned
"""

from __future__ import annotations

from typing import Optional

ERR_MULTIPART_UPLOAD_MSG_MALFORMED = "Multipart upload message malformed"
ERR_ARTIFACT_FILE_TOO_LARGE = "Artifact file too large"
ERR_ARTIFACT_NOT_UNIQUE = "Artifact not unique"
ERR_UNIQUENESS_CHECK = "Fail to check if artifact is unique"


class DeploymentsError(Exception):
    """
    Base class for artifact generation failures.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        stage: Saga stage that produced the error
    """

    code = "INTERNAL_ERROR"
    stage = "init"
    is_client_error = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class MalformedRequestError(DeploymentsError):
    code = "MALFORMED_REQUEST"
    stage = "validation"
    is_client_error = True

    def __init__(self, message: str = ERR_MULTIPART_UPLOAD_MSG_MALFORMED):
        super().__init__(message)


class PayloadTooLargeError(DeploymentsError):
    code = "PAYLOAD_TOO_LARGE"
    stage = "validation"
    is_client_error = True

    def __init__(self, message: str = ERR_ARTIFACT_FILE_TOO_LARGE):
        super().__init__(message)


class NotUniqueError(DeploymentsError):
    code = "NOT_UNIQUE"
    stage = "uniqueness"
    is_client_error = True

    def __init__(self, message: str = ERR_ARTIFACT_NOT_UNIQUE):
        super().__init__(message)


class StageError(DeploymentsError):
    """A collaborator failed during a saga stage.

    The collaborator's exception is kept as ``cause`` and chained as
    ``__cause__`` by the saga runner. Without a ``prefix`` the message is the
    cause's text verbatim.
    """

    prefix: Optional[str] = None

    def __init__(self, cause: BaseException):
        self.cause = cause
        text = str(cause)
        if self.prefix:
            text = f"{self.prefix}: {text}"
        super().__init__(text)


class UniquenessCheckError(StageError):
    code = "UNIQUENESS_CHECK_FAILED"
    stage = "uniqueness"
    prefix = ERR_UNIQUENESS_CHECK


class UploadError(StageError):
    code = "UPLOAD_FAILED"
    stage = "upload"


class GetLinkError(StageError):
    code = "GET_LINK_FAILED"
    stage = "get_link"


class DeleteLinkError(StageError):
    code = "DELETE_LINK_FAILED"
    stage = "delete_link"


class WorkflowSubmissionError(StageError):
    code = "WORKFLOW_SUBMISSION_FAILED"
    stage = "submit"


class CompensationFailedError(DeploymentsError):
    """The compensating delete failed after an earlier stage failure.

    The message puts the compensation failure first and the original failure
    after it: ``"<delete error>: <original error>"``.
    """

    code = "COMPENSATION_FAILED"
    stage = "compensation"

    def __init__(
        self,
        compensation_error: BaseException,
        original: DeploymentsError,
        orphaned_key: Optional[str] = None,
    ):
        self.compensation_error = compensation_error
        self.original = original
        self.orphaned_key = orphaned_key
        super().__init__(f"{compensation_error}: {original}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["error"]["cause"] = {
            "code": self.original.code,
            "message": self.original.message,
        }
        return data
