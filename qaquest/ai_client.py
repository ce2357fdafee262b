"""Text-generation providers behind one small interface.

Callers hand over an ordered list of ``{"role", "content"}`` messages and get
raw text back. Every provider failure (missing response, HTTP error, timeout)
is raised as :class:`AIServiceError`; decoding the text is the caller's job.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from .config import Settings
from .errors import AIServiceError

try:
    import google.generativeai as genai

    _HAS_GENAI = True
except ImportError:
    _HAS_GENAI = False

_log = logging.getLogger(__name__)

Message = Dict[str, str]

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class AIClient:
    name = "base"

    def complete(self, messages: List[Message], *, timeout: float) -> str:
        raise NotImplementedError


class GeminiClient(AIClient):
    name = "gemini"

    def __init__(self, api_key: str, model_name: str = "gemini-1.5-flash"):
        genai.configure(api_key=api_key)
        self.model_name = model_name

    def complete(self, messages: List[Message], *, timeout: float) -> str:
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        contents = [
            {"role": "model" if m.get("role") == "assistant" else "user", "parts": [m["content"]]}
            for m in messages
            if m.get("role") != "system"
        ]
        model = genai.GenerativeModel(
            model_name=self.model_name,
            system_instruction=system or None,
            generation_config={"response_mime_type": "application/json"},
        )
        try:
            resp = model.generate_content(contents, request_options={"timeout": timeout})
            text = resp.text
        except Exception as err:
            # the SDK raises a mix of google.api_core and ValueError types
            raise AIServiceError(f"gemini call failed: {err}") from err
        return (text or "").strip()


class OpenRouterClient(AIClient):
    name = "openrouter"

    def __init__(
        self,
        api_key: str,
        model_name: str = "anthropic/claude-3.5-sonnet",
        base_url: str = OPENROUTER_BASE_URL,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def complete(self, messages: List[Message], *, timeout: float) -> str:
        payload = {
            "model": self.model_name,
            "messages": messages,
            "max_tokens": 4000,
            "temperature": 0.7,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            r = self.session.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            r.raise_for_status()
            data = r.json()
            return (data["choices"][0]["message"]["content"] or "").strip()
        except requests.Timeout as err:
            raise AIServiceError(f"openrouter timed out after {timeout}s") from err
        except requests.RequestException as err:
            raise AIServiceError(f"openrouter request failed: {err}") from err
        except (KeyError, IndexError, TypeError, ValueError) as err:
            raise AIServiceError(f"openrouter returned an unexpected body: {err}") from err


@dataclass(frozen=True)
class ClientResult:
    client: Optional[AIClient] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.client is not None


def create_ai_client(settings: Settings) -> ClientResult:
    """Build the configured provider; a missing credential is reported, not raised."""
    provider = settings.ai_provider
    if provider == "openrouter":
        if not settings.openrouter_api_key:
            return ClientResult(error="OPENROUTER_API_KEY is not set")
        return ClientResult(client=OpenRouterClient(settings.openrouter_api_key, settings.openrouter_model))
    if provider == "gemini":
        if not _HAS_GENAI:
            return ClientResult(error="google-generativeai is not installed")
        if not settings.gemini_api_key:
            return ClientResult(error="GEMINI_API_KEY is not set")
        return ClientResult(client=GeminiClient(settings.gemini_api_key, settings.gemini_model))
    return ClientResult(error=f"unknown AI_PROVIDER {provider!r}")
