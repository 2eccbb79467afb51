# Services package - provider client, storage, registry and cache
# (the orchestrator is imported from modelproxy.services.orchestrator)
from modelproxy.services.generation_client import GenerationClient
from modelproxy.services.storage import AssetStore
from modelproxy.services.registry import JobRegistry
from modelproxy.services.status_cache import StatusCache
from modelproxy.services.validation import InputValidator

__all__ = [
    "GenerationClient",
    "AssetStore",
    "JobRegistry",
    "StatusCache",
    "InputValidator",
]
