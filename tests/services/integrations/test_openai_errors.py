"""Tests for mapping OpenAI SDK errors onto transient/permanent failures."""

import httpx
import openai
import pytest

from livecast.domain.captioning.errors import PermanentServiceError, TransientServiceError
from livecast.services.integrations.openai_errors import map_openai_error

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")


def _status_error(cls, status_code: int, body=None):
    return cls("error", response=httpx.Response(status_code, request=REQUEST), body=body)


@pytest.mark.parametrize(
    "exc",
    [
        openai.APITimeoutError(request=REQUEST),
        openai.APIConnectionError(request=REQUEST),
        _status_error(openai.RateLimitError, 429, {"code": "rate_limit_exceeded"}),
        _status_error(openai.InternalServerError, 500),
        _status_error(openai.APIStatusError, 503),
        _status_error(openai.ConflictError, 409),
    ],
)
def test_transient_errors(exc):
    assert isinstance(map_openai_error(exc), TransientServiceError)


@pytest.mark.parametrize(
    "exc",
    [
        _status_error(openai.RateLimitError, 429, {"code": "insufficient_quota"}),
        _status_error(openai.BadRequestError, 400),
        _status_error(openai.AuthenticationError, 401),
        _status_error(openai.NotFoundError, 404),
        ValueError("unexpected"),
    ],
)
def test_permanent_errors(exc):
    assert isinstance(map_openai_error(exc), PermanentServiceError)
