"""
Generation Provider Client
Talks to the remote 3D generation provider (Tripo AI v2 OpenAPI):
submit a task, poll its status, download the finished model.
"""

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from modelproxy.core.config import Settings
from modelproxy.models.job import GenerationInput, ImageInput, JobStatus, TextInput
from modelproxy.workers.base import (
    AuthRejectedError,
    PermanentProviderError,
    ProviderTimeoutError,
    RetryPolicy,
    TransientProviderError,
    WorkerException,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Tripo AI"
USER_AGENT = "modelproxy/1.0.0"


class ProviderState(str, Enum):
    """Provider-neutral task state."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Wire status -> provider-neutral state. Anything else counts as RUNNING.
PROVIDER_STATE_MAP: Dict[str, ProviderState] = {
    "queued": ProviderState.QUEUED,
    "running": ProviderState.RUNNING,
    "success": ProviderState.SUCCEEDED,
    "failed": ProviderState.FAILED,
    "cancelled": ProviderState.FAILED,
    "banned": ProviderState.FAILED,
    "expired": ProviderState.FAILED,
}

# Provider-neutral state -> job status
JOB_STATUS_MAP: Dict[ProviderState, JobStatus] = {
    ProviderState.QUEUED: JobStatus.PENDING,
    ProviderState.RUNNING: JobStatus.PROCESSING,
    ProviderState.SUCCEEDED: JobStatus.COMPLETED,
    ProviderState.FAILED: JobStatus.FAILED,
}

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def map_provider_state(raw_status: Optional[str]) -> ProviderState:
    """Map a wire status to a provider-neutral state; unknown values mean still running."""
    state = PROVIDER_STATE_MAP.get((raw_status or "").lower())
    if state is None:
        logger.debug(f"Unrecognized provider status {raw_status!r}, treating as running")
        return ProviderState.RUNNING
    return state


def map_job_status(state: ProviderState) -> JobStatus:
    return JOB_STATUS_MAP[state]


@dataclass(frozen=True)
class ProviderStatus:
    """Result of one status poll."""
    state: ProviderState
    progress: int = 0
    result_location: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    raw_status: str = ""
    output: Dict[str, Any] = field(default_factory=dict)

    @property
    def job_status(self) -> JobStatus:
        return map_job_status(self.state)


class GenerationClient:
    """
    Async HTTP client for the generation provider.

    Submit and poll calls use the per-call ``timeout``; downloads use the
    longer ``download_timeout``. Every call goes through ``retry_policy``,
    which retries timeouts, connection failures and 5xx responses only.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        download_timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        max_download_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.download_timeout = download_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_download_size = max_download_size
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "GenerationClient":
        policy = RetryPolicy(
            max_retries=settings.PROVIDER_MAX_RETRIES,
            base_delay=settings.PROVIDER_RETRY_DELAY,
            max_delay=settings.PROVIDER_RETRY_MAX_DELAY,
            jitter=settings.PROVIDER_RETRY_JITTER,
        )
        return cls(
            base_url=settings.PROVIDER_API_URL,
            timeout=settings.PROVIDER_TIMEOUT,
            download_timeout=settings.PROVIDER_DOWNLOAD_TIMEOUT,
            retry_policy=policy,
            max_download_size=settings.MAX_ASSET_SIZE,
            **kwargs
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def submit(
        self,
        generation_input: GenerationInput,
        credential: str,
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
    ) -> str:
        """
        Create a generation task.

        Args:
            generation_input: Text or image input
            credential: Caller's bearer token, forwarded verbatim
            on_retry: Optional hook invoked before each retry sleep

        Returns:
            Provider task id
        """
        payload = self._build_task_payload(generation_input)
        return await self.retry_policy.call(
            self._submit_once, payload, credential,
            operation="provider.submit", on_retry=on_retry
        )

    async def poll(
        self,
        provider_job_id: str,
        credential: str,
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
    ) -> ProviderStatus:
        """Fetch the current status of a provider task."""
        return await self.retry_policy.call(
            self._poll_once, provider_job_id, credential,
            operation="provider.poll", on_retry=on_retry
        )

    async def download(
        self,
        result_location: str,
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
    ) -> bytes:
        """Download the finished asset. No credential is sent to the asset host."""
        return await self.retry_policy.call(
            self._download_once, result_location,
            operation="provider.download", on_retry=on_retry
        )

    # ------------------------------------------------------------------
    # Single attempts
    # ------------------------------------------------------------------

    async def _submit_once(self, payload: Dict[str, Any], credential: str) -> str:
        response = await self._request(
            "POST", "/v2/openapi/task",
            json=payload,
            headers=self._auth_headers(credential),
            action="submit",
        )
        data = self._unwrap(response, action="submit")

        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not task_id:
            raise PermanentProviderError(
                f"{PROVIDER_NAME} accepted the task but returned no task id",
                details={"data": data},
            )

        logger.info(f"{PROVIDER_NAME} task created: {task_id}")
        return str(task_id)

    async def _poll_once(self, provider_job_id: str, credential: str) -> ProviderStatus:
        response = await self._request(
            "GET", f"/v2/openapi/task/{provider_job_id}",
            headers=self._auth_headers(credential),
            action="status",
        )
        data = self._unwrap(response, action="status")
        if not isinstance(data, dict):
            raise PermanentProviderError(f"{PROVIDER_NAME} status payload malformed")

        return self._parse_status(data)

    async def _download_once(self, result_location: str) -> bytes:
        chunks = []
        received = 0
        try:
            async with self.client.stream(
                "GET", result_location,
                timeout=self.download_timeout,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response, action="download")

                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if self.max_download_size and received > self.max_download_size:
                        raise PermanentProviderError(
                            f"Model download exceeds {self.max_download_size} bytes",
                            details={"received": received},
                        )
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise self._translate_transport_error(e, action="download") from e

        logger.info(f"Downloaded model from {PROVIDER_NAME}: {received} bytes")
        return b"".join(chunks)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _auth_headers(credential: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credential}"}

    @staticmethod
    def _build_task_payload(generation_input: GenerationInput) -> Dict[str, Any]:
        if isinstance(generation_input, TextInput):
            return {"type": "text_to_model", "prompt": generation_input.text}

        if isinstance(generation_input, ImageInput):
            extension = MIME_EXTENSIONS.get(generation_input.mime_type, "png")
            return {
                "type": "image_to_model",
                "file": {
                    "type": extension,
                    "file_token": base64.b64encode(generation_input.data).decode("ascii"),
                },
            }

        raise PermanentProviderError(f"Unsupported input type: {type(generation_input).__name__}")

    async def _request(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        logger.debug(f"{PROVIDER_NAME} request: {method} {url}")
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise self._translate_transport_error(e, action=action) from e

        logger.debug(f"{PROVIDER_NAME} response: {response.status_code} {url}")
        if response.status_code >= 400:
            self._raise_for_status(response, action=action)
        return response

    @staticmethod
    def _translate_transport_error(error: httpx.HTTPError, action: str) -> WorkerException:
        if isinstance(error, httpx.TimeoutException):
            return ProviderTimeoutError(f"{PROVIDER_NAME} {action} timed out")
        if isinstance(error, httpx.TransportError):
            # Connection reset, refused, DNS failure, protocol errors
            return TransientProviderError(
                f"{PROVIDER_NAME} {action} connection failed: {error}",
                details={"error": type(error).__name__},
            )
        return PermanentProviderError(f"{PROVIDER_NAME} {action} failed: {error}")

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        status = response.status_code
        body = _safe_json(response)
        message = response.reason_phrase or "error"
        details: Dict[str, Any] = {"status": status}

        if isinstance(body, dict):
            if body.get("code") is not None:
                details["code"] = body["code"]
            if body.get("message"):
                message = body["message"]
            if body.get("suggestion"):
                message = f"{message} ({body['suggestion']})"

        text = f"{PROVIDER_NAME} {action} failed ({status}): {message}"

        if status in (408, 504):
            raise ProviderTimeoutError(text, details=details)
        if status >= 500:
            raise TransientProviderError(text, details=details)
        if status in (401, 403):
            raise AuthRejectedError(text, details=details)
        raise PermanentProviderError(text, details=details)

    @staticmethod
    def _unwrap(response: httpx.Response, action: str) -> Any:
        """Validate the {code, data, message} envelope and return data."""
        body = _safe_json(response)
        if not isinstance(body, dict):
            raise PermanentProviderError(
                f"{PROVIDER_NAME} {action} returned a malformed payload",
                details={"status": response.status_code},
            )

        if body.get("code") != 0:
            message = body.get("message") or f"{action} failed"
            if body.get("suggestion"):
                message = f"{message} ({body['suggestion']})"
            raise PermanentProviderError(
                f"{PROVIDER_NAME}: {message}",
                details={"code": body.get("code")},
            )

        return body.get("data")

    @staticmethod
    def _parse_status(data: Dict[str, Any]) -> ProviderStatus:
        raw_status = str(data.get("status") or "")
        state = map_provider_state(raw_status)

        try:
            progress = int(data.get("progress") or 0)
        except (TypeError, ValueError):
            progress = 0
        progress = max(0, min(progress, 100))

        output = data.get("output") or {}
        if not isinstance(output, dict):
            output = {}

        result_location = None
        thumbnail_url = None
        if state == ProviderState.SUCCEEDED:
            result_location = output.get("pbr_model") or output.get("model") or None
            thumbnail_url = output.get("rendered_image") or output.get("pbr_image") or None

        error_message = None
        if state == ProviderState.FAILED:
            error_message = data.get("error_message") or f"{PROVIDER_NAME} generation {raw_status or 'failed'}"

        return ProviderStatus(
            state=state,
            progress=progress,
            result_location=result_location,
            thumbnail_url=thumbnail_url,
            error_message=error_message,
            raw_status=raw_status,
            output=output,
        )


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


__all__ = [
    "ProviderState",
    "ProviderStatus",
    "PROVIDER_STATE_MAP",
    "JOB_STATUS_MAP",
    "map_provider_state",
    "map_job_status",
    "GenerationClient",
]
