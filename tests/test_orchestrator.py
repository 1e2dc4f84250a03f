"""Tests for the artifact generation saga."""

import asyncio
import io
import time

import pytest

from fleet_deployments.client.workflows import WorkflowsError
from fleet_deployments.core.orchestrator import ArtifactOrchestrator
from fleet_deployments.errors import (
    CompensationFailedError,
    DeleteLinkError,
    GetLinkError,
    MalformedRequestError,
    NotUniqueError,
    PayloadTooLargeError,
    UniquenessCheckError,
    UploadError,
    WorkflowSubmissionError,
)
from fleet_deployments.storage import LocalFileStorage


def uploaded_key(file_storage) -> str:
    return file_storage.upload_artifact.await_args.args[0]


def submitted_message(workflows):
    return workflows.start_generate_artifact.await_args.args[0]


class TestValidation:
    """Requests rejected before any collaborator is touched."""

    @pytest.mark.asyncio
    async def test_missing_request(self, orchestrator, store, file_storage, workflows):
        with pytest.raises(MalformedRequestError) as exc_info:
            await orchestrator.generate_artifact(None)

        assert str(exc_info.value) == "Multipart upload message malformed"
        store.is_artifact_unique.assert_not_awaited()
        file_storage.upload_artifact.assert_not_awaited()
        workflows.start_generate_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_payload(self, orchestrator, make_request, store):
        with pytest.raises(MalformedRequestError):
            await orchestrator.generate_artifact(make_request(payload=None))

        store.is_artifact_unique.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payload_too_large(
        self, orchestrator, make_request, store, file_storage, workflows
    ):
        with pytest.raises(PayloadTooLargeError) as exc_info:
            await orchestrator.generate_artifact(make_request(size=1025))

        assert str(exc_info.value) == "Artifact file too large"
        assert exc_info.value.is_client_error
        store.is_artifact_unique.assert_not_awaited()
        file_storage.upload_artifact.assert_not_awaited()
        file_storage.delete.assert_not_awaited()
        workflows.start_generate_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_size_equal_to_limit_is_accepted(self, orchestrator, make_request):
        artifact_id = await orchestrator.generate_artifact(make_request(size=1024))

        assert artifact_id


class TestUniqueness:
    @pytest.mark.asyncio
    async def test_not_unique(
        self, orchestrator, make_request, store, file_storage, workflows
    ):
        store.is_artifact_unique.return_value = False

        with pytest.raises(NotUniqueError) as exc_info:
            await orchestrator.generate_artifact(make_request())

        assert str(exc_info.value) == "Artifact not unique"
        file_storage.upload_artifact.assert_not_awaited()
        file_storage.delete.assert_not_awaited()
        workflows.start_generate_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_error_is_not_reported_as_conflict(
        self, orchestrator, make_request, store, file_storage
    ):
        cause = RuntimeError("database unavailable")
        store.is_artifact_unique.side_effect = cause

        with pytest.raises(UniquenessCheckError) as exc_info:
            await orchestrator.generate_artifact(make_request())

        error = exc_info.value
        assert str(error) == "Fail to check if artifact is unique: database unavailable"
        assert error.__cause__ is cause
        assert not error.is_client_error
        file_storage.upload_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_query_uses_request_fields(self, orchestrator, make_request, store):
        await orchestrator.generate_artifact(make_request(tenant_id="tenant_id"))

        store.is_artifact_unique.assert_awaited_once_with(
            "artifact", ("dt1", "dt2"), tenant_id="tenant_id"
        )


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_failure_is_not_compensated(
        self, orchestrator, make_request, file_storage, workflows
    ):
        file_storage.upload_artifact.side_effect = IOError("disk full")

        with pytest.raises(UploadError) as exc_info:
            await orchestrator.generate_artifact(make_request())

        assert str(exc_info.value) == "disk full"
        assert isinstance(exc_info.value.__cause__, IOError)
        file_storage.get_request.assert_not_awaited()
        file_storage.delete.assert_not_awaited()
        workflows.start_generate_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upload_arguments(self, orchestrator, make_request, file_storage):
        request = make_request()

        await orchestrator.generate_artifact(request)

        key, size, reader, content_type = file_storage.upload_artifact.await_args.args
        assert key
        assert size == request.size == 10
        assert reader is request.payload
        assert content_type == "application/octet-stream"


class TestCompensation:
    @pytest.mark.asyncio
    async def test_get_link_failure_deletes_upload(
        self, orchestrator, make_request, file_storage, workflows
    ):
        file_storage.get_request.side_effect = Exception("signing failed")

        with pytest.raises(GetLinkError) as exc_info:
            await orchestrator.generate_artifact(make_request())

        assert str(exc_info.value) == "signing failed"
        file_storage.delete.assert_awaited_once_with(uploaded_key(file_storage))
        workflows.start_generate_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_link_failure_deletes_upload(
        self, orchestrator, make_request, file_storage, workflows
    ):
        file_storage.delete_request.side_effect = Exception("signing failed")

        with pytest.raises(DeleteLinkError):
            await orchestrator.generate_artifact(make_request())

        file_storage.delete.assert_awaited_once_with(uploaded_key(file_storage))
        workflows.start_generate_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_workflow_failure_deletes_upload(
        self, orchestrator, make_request, file_storage, workflows
    ):
        workflows.start_generate_artifact.side_effect = WorkflowsError(
            "failed to start workflow: generate_artifact"
        )

        with pytest.raises(WorkflowSubmissionError) as exc_info:
            await orchestrator.generate_artifact(make_request())

        assert str(exc_info.value) == "failed to start workflow: generate_artifact"
        assert isinstance(exc_info.value.__cause__, WorkflowsError)
        file_storage.delete.assert_awaited_once_with(uploaded_key(file_storage))

    @pytest.mark.asyncio
    async def test_workflow_and_delete_failure(
        self, orchestrator, make_request, file_storage, workflows
    ):
        workflows.start_generate_artifact.side_effect = WorkflowsError(
            "failed to start workflow: generate_artifact"
        )
        file_storage.delete.side_effect = Exception("unable to remove the file")

        with pytest.raises(CompensationFailedError) as exc_info:
            await orchestrator.generate_artifact(make_request())

        error = exc_info.value
        assert str(error) == (
            "unable to remove the file: failed to start workflow: generate_artifact"
        )
        assert isinstance(error.original, WorkflowSubmissionError)
        assert error.__cause__ is error.original
        assert error.orphaned_key == uploaded_key(file_storage)
        file_storage.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_link_and_delete_failure(
        self, orchestrator, make_request, file_storage
    ):
        file_storage.get_request.side_effect = Exception("signing failed")
        file_storage.delete.side_effect = Exception("unable to remove the file")

        with pytest.raises(CompensationFailedError) as exc_info:
            await orchestrator.generate_artifact(make_request())

        assert str(exc_info.value) == "unable to remove the file: signing failed"
        assert isinstance(exc_info.value.original, GetLinkError)


class TestSuccess:
    @pytest.mark.asyncio
    async def test_submits_message(
        self, orchestrator, make_request, file_storage, workflows
    ):
        request = make_request()
        artifact_id = await orchestrator.generate_artifact(request)

        assert artifact_id
        assert uploaded_key(file_storage) == artifact_id
        message = submitted_message(workflows)
        assert message.artifact_id == artifact_id
        assert message.name == "artifact"
        assert message.description == "description"
        assert message.size == request.size
        assert message.device_types_compatible == ["dt1", "dt2"]
        assert message.type == "single_file"
        assert message.get_artifact_uri == "https://storage/get"
        assert message.delete_artifact_uri == "https://storage/delete"
        assert message.token == "token"
        assert message.tenant_id == ""
        file_storage.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_links_signed_for_artifact_with_configured_expiry(
        self, orchestrator, make_request, file_storage
    ):
        artifact_id = await orchestrator.generate_artifact(make_request())

        key, expire = file_storage.get_request.await_args.args
        assert key == artifact_id
        assert expire.total_seconds() == 3600
        key, expire = file_storage.delete_request.await_args.args
        assert key == artifact_id
        assert expire.total_seconds() == 3600

    @pytest.mark.asyncio
    async def test_tenant_propagates(self, orchestrator, make_request, workflows):
        await orchestrator.generate_artifact(make_request(tenant_id="tenant_id"))

        assert submitted_message(workflows).tenant_id == "tenant_id"

    @pytest.mark.asyncio
    async def test_identical_requests_get_distinct_ids(
        self, orchestrator, make_request, file_storage
    ):
        first = await orchestrator.generate_artifact(make_request())
        second = await orchestrator.generate_artifact(make_request())

        assert first != second
        keys = [call.args[0] for call in file_storage.upload_artifact.await_args_list]
        assert keys == [first, second]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_submission_deletes_upload(
        self, orchestrator, make_request, file_storage, workflows
    ):
        workflows.start_generate_artifact.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await orchestrator.generate_artifact(make_request())

        file_storage.delete.assert_awaited_once_with(uploaded_key(file_storage))

    @pytest.mark.asyncio
    async def test_deadline_during_submission_deletes_upload(
        self, orchestrator, make_request, file_storage, workflows
    ):
        async def hang(message):
            await asyncio.sleep(10)

        workflows.start_generate_artifact.side_effect = hang

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                orchestrator.generate_artifact(make_request()), timeout=0.05
            )

        file_storage.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_deadline_during_upload_leaves_no_object(
        self, store, workflows, settings, make_request, tmp_path
    ):
        class SlowReader(io.BytesIO):
            def read(self, size=-1):
                time.sleep(0.02)
                return super().read(1)

        storage = LocalFileStorage(tmp_path, secret_key="test-secret")
        orchestrator = ArtifactOrchestrator(store, storage, workflows, settings)
        request = make_request(size=100, payload=SlowReader(b"x" * 100))

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(orchestrator.generate_artifact(request), timeout=0.05)

        await asyncio.sleep(0.1)
        assert list(tmp_path.iterdir()) == []
        workflows.start_generate_artifact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_before_upload_has_nothing_to_delete(
        self, orchestrator, make_request, store, file_storage
    ):
        store.is_artifact_unique.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await orchestrator.generate_artifact(make_request())

        file_storage.upload_artifact.assert_not_awaited()
        file_storage.delete.assert_not_awaited()
