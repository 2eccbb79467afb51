import pytest

from modelproxy.models.job import ImageInput, TextInput
from modelproxy.services.validation import (
    InputValidator,
    validate_image,
    validate_job_id,
    validate_text_content,
    validate_token,
)
from modelproxy.workers.base import ValidationError

ALLOWED = ("image/jpeg", "image/png", "image/webp")


@pytest.mark.parametrize("token, valid", [
    ("tsk_test-token.123", True),
    ("a" * 10, True),
    ("a" * 500, True),
    ("short", False),
    ("a" * 501, False),
    ("has space token", False),
    ("semicolon;token", False),
    ("", False),
    (None, False),
])
def test_validate_token(token, valid):
    assert validate_token(token) is valid


def test_text_accepts_plain_prompt():
    assert validate_text_content("a red chair") == []


@pytest.mark.parametrize("text", ["", "   ", None])
def test_text_rejects_blank(text):
    assert validate_text_content(text) == ["text must not be empty"]


def test_text_rejects_overlong():
    assert validate_text_content("x" * 1001, max_length=1000) == ["text must be at most 1000 characters"]


@pytest.mark.parametrize("text", [
    "<script>alert(1)</script> chair",
    "javascript:alert(1)",
    "a chair <img onerror=alert(1)>",
])
def test_text_rejects_markup(text):
    assert validate_text_content(text) == ["text contains disallowed markup"]


def test_image_accepts_allowed_type():
    image = ImageInput(data=b"\xff\xd8jpeg", mime_type="image/jpeg")
    assert validate_image(image, ALLOWED, 1024) == []


def test_image_rejects_type_and_size():
    image = ImageInput(data=b"x" * 2048, mime_type="image/gif")
    problems = validate_image(image, ALLOWED, 1024)

    assert len(problems) == 2
    assert "image/gif" in problems[0]
    assert "2048" in problems[1]


def test_image_rejects_empty():
    image = ImageInput(data=b"", mime_type="image/png")
    assert validate_image(image, ALLOWED, 1024) == ["image must not be empty"]


def test_validate_job_id():
    assert validate_job_id("7f1f3c2e-9f0e-4a8e-8a43-3c7b6b1f0d11")
    assert not validate_job_id("not-a-uuid")
    assert not validate_job_id("7f1f3c2e9f0e4a8e8a433c7b6b1f0d11")
    assert not validate_job_id("")


def test_input_validator_collects_field_errors():
    validator = InputValidator(max_text_length=10)

    with pytest.raises(ValidationError) as exc_info:
        validator.validate(TextInput(text="a much too long prompt"), "bad")

    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"errors": [
        {"field": "token", "message": "invalid token format"},
        {"field": "input", "message": "text must be at most 10 characters"},
    ]}


def test_input_validator_passes_valid_image():
    validator = InputValidator(max_file_size=100)
    validator.validate(ImageInput(data=b"png", mime_type="image/png"), "tsk_test-token.123")
