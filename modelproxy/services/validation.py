"""
Input Validation
Checks caller input, credentials and job ids before any job is created.
"""

import re
import uuid
from typing import Iterable, List, Optional

from modelproxy.models.job import GenerationInput, ImageInput, TextInput
from modelproxy.workers.base import ValidationError

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
TOKEN_MIN_LENGTH = 10
TOKEN_MAX_LENGTH = 500

HARMFUL_PATTERNS = [
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
]


def validate_token(token: Optional[str]) -> bool:
    if not token or not isinstance(token, str):
        return False
    if not TOKEN_MIN_LENGTH <= len(token) <= TOKEN_MAX_LENGTH:
        return False
    return bool(TOKEN_PATTERN.match(token))


def validate_text_content(text: Optional[str], max_length: int = 1000) -> List[str]:
    """Return a list of problems with a text prompt; empty when valid."""
    if not text or not isinstance(text, str) or not text.strip():
        return ["text must not be empty"]
    problems = []
    if len(text) > max_length:
        problems.append(f"text must be at most {max_length} characters")
    if any(pattern.search(text) for pattern in HARMFUL_PATTERNS):
        problems.append("text contains disallowed markup")
    return problems


def validate_image(image: ImageInput, allowed_types: Iterable[str], max_size: int) -> List[str]:
    problems = []
    allowed = set(allowed_types)
    if image.mime_type not in allowed:
        problems.append(
            f"unsupported image type {image.mime_type}; allowed: {', '.join(sorted(allowed))}"
        )
    if image.size <= 0:
        problems.append("image must not be empty")
    elif image.size > max_size:
        problems.append(f"image is {image.size} bytes; maximum is {max_size} bytes")
    return problems


def validate_job_id(job_id: Optional[str]) -> bool:
    if not job_id or not isinstance(job_id, str):
        return False
    try:
        return str(uuid.UUID(job_id)) == job_id.lower()
    except ValueError:
        return False


class InputValidator:
    """Validates a submission as a whole and raises ValidationError with field details."""

    def __init__(
        self,
        max_text_length: int = 1000,
        allowed_image_types: Iterable[str] = ("image/jpeg", "image/png", "image/webp"),
        max_file_size: int = 10 * 1024 * 1024,
    ):
        self.max_text_length = max_text_length
        self.allowed_image_types = tuple(allowed_image_types)
        self.max_file_size = max_file_size

    def validate(self, generation_input: GenerationInput, credential: Optional[str]) -> None:
        errors = []

        if not validate_token(credential):
            errors.append({"field": "token", "message": "invalid token format"})

        if isinstance(generation_input, TextInput):
            for message in validate_text_content(generation_input.text, self.max_text_length):
                errors.append({"field": "input", "message": message})
        elif isinstance(generation_input, ImageInput):
            for message in validate_image(generation_input, self.allowed_image_types, self.max_file_size):
                errors.append({"field": "image", "message": message})
        else:
            errors.append({"field": "type", "message": "unsupported input type"})

        if errors:
            raise ValidationError("Request validation failed", details={"errors": errors})


__all__ = [
    "validate_token",
    "validate_text_content",
    "validate_image",
    "validate_job_id",
    "InputValidator",
]
