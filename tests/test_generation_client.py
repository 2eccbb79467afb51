import base64
import json

import httpx
import pytest

from conftest import MODEL_BYTES, MODEL_URL, PREVIEW_URL, ProviderScript, make_client, status_payload, success_payload
from modelproxy.models.job import ImageInput, JobStatus, TextInput
from modelproxy.services.generation_client import (
    GenerationClient,
    ProviderState,
    map_job_status,
    map_provider_state,
)
from modelproxy.workers.base import (
    AuthRejectedError,
    ErrorCode,
    PermanentProviderError,
    RetryExhaustedError,
    RetryPolicy,
)


def client_for(handler, max_retries: int = 2, **kwargs) -> GenerationClient:
    return GenerationClient(
        base_url="https://provider.test",
        retry_policy=RetryPolicy(max_retries=max_retries, base_delay=0.0, max_delay=0.0),
        transport=httpx.MockTransport(handler),
        **kwargs
    )


@pytest.mark.anyio
async def test_submit_text_sends_prompt_and_bearer_token():
    script = ProviderScript()
    client = make_client(script)

    task_id = await client.submit(TextInput(text="a red chair"), "tsk_test-token.123")

    assert task_id == "task-123"
    request = script.requests[0]
    assert request.url.path == "/v2/openapi/task"
    assert request.headers["Authorization"] == "Bearer tsk_test-token.123"
    assert json.loads(request.content) == {"type": "text_to_model", "prompt": "a red chair"}
    await client.aclose()


@pytest.mark.anyio
async def test_submit_image_sends_base64_file_token():
    script = ProviderScript()
    client = make_client(script)
    image = ImageInput(data=b"\x89PNG-bytes", mime_type="image/png", filename="chair.png")

    await client.submit(image, "tsk_test-token.123")

    body = json.loads(script.requests[0].content)
    assert body["type"] == "image_to_model"
    assert body["file"]["type"] == "png"
    assert base64.b64decode(body["file"]["file_token"]) == b"\x89PNG-bytes"
    await client.aclose()


@pytest.mark.anyio
async def test_submit_retries_5xx_until_exhausted():
    script = ProviderScript(submit_status=503)
    client = make_client(script, max_retries=2)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await client.submit(TextInput(text="a red chair"), "tsk_test-token.123")

    assert script.submit_calls == 3
    assert exc_info.value.code == ErrorCode.PROVIDER_UNAVAILABLE
    await client.aclose()


@pytest.mark.anyio
async def test_submit_recovers_after_transient_failure():
    responses = [
        httpx.Response(502),
        httpx.Response(200, json={"code": 0, "data": {"task_id": "task-9"}}),
    ]
    calls = []

    def handler(request):
        calls.append(request)
        return responses.pop(0)

    client = client_for(handler)
    assert await client.submit(TextInput(text="a lamp"), "tsk_test-token.123") == "task-9"
    assert len(calls) == 2
    await client.aclose()


@pytest.mark.anyio
async def test_auth_rejection_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"code": 1002, "message": "invalid api key"})

    client = client_for(handler)
    with pytest.raises(AuthRejectedError) as exc_info:
        await client.submit(TextInput(text="a lamp"), "tsk_test-token.123")

    assert len(calls) == 1
    assert "invalid api key" in exc_info.value.message
    await client.aclose()


@pytest.mark.anyio
async def test_envelope_error_is_permanent():
    def handler(request):
        return httpx.Response(200, json={"code": 2010, "message": "insufficient credit", "suggestion": "top up"})

    client = client_for(handler)
    with pytest.raises(PermanentProviderError) as exc_info:
        await client.submit(TextInput(text="a lamp"), "tsk_test-token.123")

    assert "insufficient credit" in exc_info.value.message
    assert exc_info.value.details == {"code": 2010}
    await client.aclose()


@pytest.mark.anyio
async def test_missing_task_id_is_permanent():
    client = client_for(lambda request: httpx.Response(200, json={"code": 0, "data": {}}))
    with pytest.raises(PermanentProviderError):
        await client.submit(TextInput(text="a lamp"), "tsk_test-token.123")
    await client.aclose()


@pytest.mark.anyio
async def test_timeouts_are_retried_and_reported_as_timeouts():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    client = client_for(handler, max_retries=1)
    with pytest.raises(RetryExhaustedError) as exc_info:
        await client.poll("task-123", "tsk_test-token.123")

    assert len(calls) == 2
    assert exc_info.value.code == ErrorCode.PROVIDER_TIMEOUT
    await client.aclose()


@pytest.mark.anyio
async def test_connection_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection reset", request=request)

    client = client_for(handler, max_retries=0)
    with pytest.raises(RetryExhaustedError) as exc_info:
        await client.poll("task-123", "tsk_test-token.123")

    assert exc_info.value.code == ErrorCode.PROVIDER_UNAVAILABLE
    await client.aclose()


@pytest.mark.anyio
async def test_poll_parses_success_output():
    client = make_client(ProviderScript(statuses=[success_payload()]))

    status = await client.poll("task-123", "tsk_test-token.123")

    assert status.state == ProviderState.SUCCEEDED
    assert status.job_status == JobStatus.COMPLETED
    assert status.progress == 100
    assert status.result_location == MODEL_URL
    assert status.thumbnail_url == PREVIEW_URL
    assert status.error_message is None
    await client.aclose()


@pytest.mark.anyio
async def test_poll_reports_failure_message():
    payload = status_payload("failed", 40, error_message="content policy violation")
    client = make_client(ProviderScript(statuses=[payload]))

    status = await client.poll("task-123", "tsk_test-token.123")

    assert status.state == ProviderState.FAILED
    assert status.error_message == "content policy violation"
    assert status.result_location is None
    await client.aclose()


@pytest.mark.anyio
async def test_poll_clamps_progress_and_treats_unknown_state_as_running():
    client = make_client(ProviderScript(statuses=[status_payload("rendering", 150)]))

    status = await client.poll("task-123", "tsk_test-token.123")

    assert status.state == ProviderState.RUNNING
    assert status.progress == 100
    await client.aclose()


@pytest.mark.anyio
async def test_download_returns_asset_bytes():
    script = ProviderScript()
    client = make_client(script)

    data = await client.download(MODEL_URL)

    assert data == MODEL_BYTES
    assert "Authorization" not in script.requests[0].headers
    await client.aclose()


@pytest.mark.anyio
async def test_download_rejects_oversized_assets():
    client = make_client(ProviderScript(model_bytes=b"x" * 1024), max_download_size=100)
    with pytest.raises(PermanentProviderError):
        await client.download(MODEL_URL)
    await client.aclose()


@pytest.mark.anyio
async def test_download_not_found_is_permanent():
    script = ProviderScript(download_status=404)
    client = make_client(script)
    with pytest.raises(PermanentProviderError):
        await client.download(MODEL_URL)
    assert script.download_calls == 1
    await client.aclose()


def test_state_tables():
    assert map_provider_state("queued") == ProviderState.QUEUED
    assert map_provider_state("running") == ProviderState.RUNNING
    assert map_provider_state("success") == ProviderState.SUCCEEDED
    for raw in ("failed", "cancelled", "banned", "expired"):
        assert map_provider_state(raw) == ProviderState.FAILED
    assert map_provider_state("something_new") == ProviderState.RUNNING
    assert map_provider_state(None) == ProviderState.RUNNING

    assert map_job_status(ProviderState.QUEUED) == JobStatus.PENDING
    assert map_job_status(ProviderState.RUNNING) == JobStatus.PROCESSING
    assert map_job_status(ProviderState.SUCCEEDED) == JobStatus.COMPLETED
    assert map_job_status(ProviderState.FAILED) == JobStatus.FAILED
