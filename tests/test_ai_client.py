import pytest
import requests

from qaquest.ai_client import OpenRouterClient, create_ai_client
from qaquest.config import Settings, get_settings
from qaquest.errors import AIServiceError


class _Response:
    def __init__(self, status=200, body=None):
        self.status_code = status
        self._body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _Session:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


MESSAGES = [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]


def test_openrouter_returns_message_content_and_passes_timeout():
    session = _Session(_Response(body={"choices": [{"message": {"content": " hello "}}]}))
    client = OpenRouterClient("key", "some/model", session=session)
    assert client.complete(MESSAGES, timeout=7) == "hello"
    url, kwargs = session.calls[0]
    assert url.endswith("/chat/completions")
    assert kwargs["timeout"] == 7
    assert kwargs["headers"]["Authorization"] == "Bearer key"
    assert kwargs["json"]["messages"] == MESSAGES


@pytest.mark.parametrize(
    "outcome",
    [
        requests.Timeout("slow"),
        requests.ConnectionError("down"),
        _Response(status=500, body={}),
        _Response(body={"unexpected": True}),
        _Response(body=None),
    ],
)
def test_openrouter_failures_surface_as_service_errors(outcome):
    client = OpenRouterClient("key", session=_Session(outcome))
    with pytest.raises(AIServiceError):
        client.complete(MESSAGES, timeout=1)


def test_missing_credential_is_reported_not_raised():
    result = create_ai_client(Settings(ai_provider="openrouter"))
    assert result.ok is False
    assert "OPENROUTER_API_KEY" in result.error


def test_unknown_provider_is_reported():
    result = create_ai_client(Settings(ai_provider="carrier-pigeon"))
    assert result.client is None and "carrier-pigeon" in result.error


def test_openrouter_client_built_when_key_present():
    result = create_ai_client(Settings(ai_provider="openrouter", openrouter_api_key="k"))
    assert result.ok and isinstance(result.client, OpenRouterClient)


def test_settings_from_environment(monkeypatch, caplog):
    monkeypatch.setenv("FRONTEND_ORIGIN", "https://a.example, https://b.example")
    monkeypatch.setenv("AI_PROVIDER", "OpenRouter")
    monkeypatch.setenv("AI_GRADING_TIMEOUT_S", "soon")
    monkeypatch.setenv("GRADING_WORKERS", "0")
    with caplog.at_level("WARNING"):
        s = get_settings()
    assert s.frontend_origins == ["https://a.example", "https://b.example"]
    assert s.ai_provider == "openrouter"
    assert s.grading_timeout_s == 20
    assert s.grading_workers == 1
    assert "invalid_int_setting" in caplog.text
