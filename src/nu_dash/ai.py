"""Text generation backends used by the "explain" key.

Two backends share one call shape, ``generate(prompt, model) -> str``:

* Ollama, a locally hosted model server. Models are pulled on first use.
* Gemini, Google's cloud API, keyed by ``GEMINI_API_KEY``.

Request failures raise :class:`GenerationError` so callers can tell an
answer from an error. A backend that cannot be constructed raises
:class:`BackendConfigError`, which the dashboard treats as fatal.
"""

import os
from typing import Protocol

import requests

from .logging import get_logger

logger = get_logger("ai")

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3.2"

GEMINI_API_KEY_VAR = "GEMINI_API_KEY"
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"

# Appended to every Gemini answer to mark where it ends in the output pane
GEMINI_TRAILER = "\n---"

REQUEST_TIMEOUT = 120
PULL_TIMEOUT = 1800


class BackendConfigError(RuntimeError):
    """The backend client cannot be built (missing key, unknown backend)."""


class GenerationError(RuntimeError):
    """A generation request failed."""


class TextBackend(Protocol):
    default_model: str

    def generate(self, prompt: str, model: str) -> str: ...


def _json_body(resp: requests.Response, backend: str) -> dict:
    try:
        data = resp.json()
    except ValueError as e:
        raise GenerationError(f"{backend} returned a non-JSON response: {e}") from None
    if not isinstance(data, dict):
        raise GenerationError(f"{backend} returned {type(data).__name__}, expected an object")
    return data


def _error_detail(resp: requests.Response) -> str:
    try:
        detail = resp.json().get("error", resp.reason)
    except (ValueError, AttributeError):
        detail = resp.reason
    if isinstance(detail, dict):
        detail = detail.get("message", resp.reason)
    return str(detail)


class OllamaBackend:
    """Local Ollama server over its HTTP API."""

    default_model = DEFAULT_OLLAMA_MODEL

    def __init__(self, host: str | None = None):
        self.host = (host or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST).rstrip("/")
        if not self.host.startswith(("http://", "https://")):
            self.host = f"http://{self.host}"

    def _post(self, path: str, payload: dict, timeout: float) -> requests.Response:
        try:
            return requests.post(f"{self.host}{path}", json=payload, timeout=timeout)
        except requests.RequestException as e:
            raise GenerationError(f"Ollama request to {path} failed: {e}") from e

    def pull_if_needed(self, model: str) -> None:
        """Pull ``model`` unless the server already has it."""
        resp = self._post("/api/show", {"model": model}, REQUEST_TIMEOUT)
        if resp.status_code == 200:
            return
        if resp.status_code != 404:
            raise GenerationError(f"Ollama {resp.status_code}: {_error_detail(resp)}")

        logger.info("Pulling Ollama model", model=model)
        resp = self._post("/api/pull", {"model": model, "stream": False}, PULL_TIMEOUT)
        if resp.status_code != 200:
            raise GenerationError(f"Ollama pull {resp.status_code}: {_error_detail(resp)}")

    def generate(self, prompt: str, model: str) -> str:
        model = model or self.default_model
        self.pull_if_needed(model)
        resp = self._post(
            "/api/generate",
            {"model": model, "prompt": prompt, "stream": False},
            REQUEST_TIMEOUT,
        )
        if resp.status_code != 200:
            raise GenerationError(f"Ollama {resp.status_code}: {_error_detail(resp)}")
        text = _json_body(resp, "Ollama").get("response", "")
        if not isinstance(text, str):
            raise GenerationError("Ollama response field is not text")
        return f"\n{text.strip()}\n"


class GeminiBackend:
    """Google Gemini ``generateContent`` REST endpoint."""

    default_model = DEFAULT_GEMINI_MODEL

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else os.environ.get(GEMINI_API_KEY_VAR, "")
        if not self.api_key:
            raise BackendConfigError(f"{GEMINI_API_KEY_VAR} not set")

    def generate(self, prompt: str, model: str) -> str:
        url = GEMINI_API_URL.format(model=model or self.default_model)
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            resp = requests.post(
                url,
                params={"key": self.api_key},
                json=payload,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            # The exception text carries the URL, which carries the key
            raise GenerationError(f"Gemini request failed: {type(e).__name__}") from None
        if resp.status_code != 200:
            raise GenerationError(f"Gemini API {resp.status_code}: {_error_detail(resp)}")
        try:
            return response_to_text(_json_body(resp, "Gemini"))
        except (AttributeError, TypeError) as e:
            raise GenerationError(f"Gemini response has an unexpected shape: {e}") from None


def response_to_text(data: dict) -> str:
    """Concatenate every text part of every candidate, then the trailer."""
    text = ""
    for candidate in data.get("candidates", []):
        for part in candidate.get("content", {}).get("parts", []):
            text += part.get("text", "")
    return text + GEMINI_TRAILER


def make_backend(name: str) -> TextBackend:
    """Build the backend named in the config.

    Raises:
        BackendConfigError: Unknown name, or the backend cannot be built.
    """
    if name == "ollama":
        return OllamaBackend()
    if name == "gemini":
        return GeminiBackend()
    raise BackendConfigError(f"unknown AI backend {name!r}")
