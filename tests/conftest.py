"""Shared fixtures: scripted provider, recording event sink, local asset store."""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from modelproxy.models.job import JobStatus
from modelproxy.services.generation_client import GenerationClient
from modelproxy.services.orchestrator import Orchestrator
from modelproxy.services.registry import JobRegistry
from modelproxy.services.storage import AssetStore, LocalBackend
from modelproxy.workers.base import RetryPolicy
from modelproxy.workers.poller import PollSettings

TOKEN = "tsk_test-token.123"
PROVIDER_URL = "https://provider.test"
MODEL_URL = "https://assets.test/output/model.glb"
PREVIEW_URL = "https://assets.test/output/preview.webp"
MODEL_BYTES = b"glTF\x02\x00\x00\x00fake-model-bytes"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def status_payload(status: str, progress: int = 0, **extra: Any) -> Dict[str, Any]:
    data = {"task_id": "task-123", "status": status, "progress": progress}
    data.update(extra)
    return data


def success_payload(model_url: Optional[str] = MODEL_URL, preview_url: str = PREVIEW_URL) -> Dict[str, Any]:
    output = {"rendered_image": preview_url}
    if model_url:
        output["pbr_model"] = model_url
    return status_payload("success", 100, output=output)


class ProviderScript:
    """
    httpx.MockTransport handler imitating the provider and its asset host.

    ``statuses`` is consumed one entry per status request; the last entry
    repeats. An int entry answers with that HTTP status code.
    """

    def __init__(
        self,
        statuses: Optional[List[Any]] = None,
        submit_status: int = 200,
        download_status: int = 200,
        model_bytes: bytes = MODEL_BYTES,
    ):
        self.statuses = list(statuses or [success_payload()])
        self.submit_status = submit_status
        self.download_status = download_status
        self.model_bytes = model_bytes
        self.requests: List[httpx.Request] = []

    def _count(self, predicate) -> int:
        return sum(1 for request in self.requests if predicate(request))

    @property
    def submit_calls(self) -> int:
        return self._count(lambda r: r.method == "POST")

    @property
    def poll_calls(self) -> int:
        return self._count(lambda r: r.method == "GET" and r.url.path.startswith("/v2/openapi/task/"))

    @property
    def download_calls(self) -> int:
        return self._count(lambda r: r.url.host == "assets.test")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host == "assets.test":
            if self.download_status != 200:
                return httpx.Response(self.download_status)
            return httpx.Response(200, content=self.model_bytes)

        if request.method == "POST" and request.url.path == "/v2/openapi/task":
            if self.submit_status != 200:
                return httpx.Response(self.submit_status, json={"code": self.submit_status, "message": "unavailable"})
            return httpx.Response(200, json={"code": 0, "data": {"task_id": "task-123"}})

        if request.method == "GET" and request.url.path.startswith("/v2/openapi/task/"):
            item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            if isinstance(item, int):
                return httpx.Response(item, json={"code": item, "message": "status error"})
            return httpx.Response(200, json={"code": 0, "data": item})

        return httpx.Response(404)


class RecordingEvents:
    """EventRecorder that keeps every event in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def record(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def named(self, event: str) -> List[Dict[str, Any]]:
        return [fields for name, fields in self.events if name == event]


def make_client(script: ProviderScript, max_retries: int = 2, **kwargs) -> GenerationClient:
    return GenerationClient(
        base_url=PROVIDER_URL,
        retry_policy=RetryPolicy(max_retries=max_retries, base_delay=0.0, max_delay=0.0),
        transport=httpx.MockTransport(script),
        **kwargs
    )


def fast_poll_settings(**overrides: Any) -> PollSettings:
    values = dict(
        interval=0.001,
        backoff_factor=1.0,
        error_backoff_factor=1.0,
        max_interval=0.01,
        max_attempts=50,
        job_timeout=5.0,
    )
    values.update(overrides)
    return PollSettings(**values)


async def wait_for_status(orchestrator: Orchestrator, job_id: str, status: JobStatus, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if orchestrator.registry.require(job_id).status == status:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"job {job_id} never reached {status.value}")


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def asset_store(tmp_path) -> AssetStore:
    return AssetStore(LocalBackend(str(tmp_path / "assets")), api_base_url="http://api.test")


@pytest.fixture
def script() -> ProviderScript:
    return ProviderScript()


@pytest.fixture
def orchestrator(script, asset_store, registry, events) -> Orchestrator:
    return Orchestrator(
        client=make_client(script),
        store=asset_store,
        registry=registry,
        events=events,
        poll_settings=fast_poll_settings(),
    )
