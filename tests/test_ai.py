"""Tests for nu_dash.ai module."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from nu_dash.ai import (
    DEFAULT_OLLAMA_HOST,
    GEMINI_TRAILER,
    BackendConfigError,
    GeminiBackend,
    GenerationError,
    OllamaBackend,
    make_backend,
    response_to_text,
)


def _response(status: int = 200, data: dict | None = None, reason: str = "OK") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.reason = reason
    resp.json.return_value = data or {}
    return resp


class TestOllamaBackend:
    def test_default_host(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_HOST", raising=False)
        assert OllamaBackend().host == DEFAULT_OLLAMA_HOST

    def test_host_from_env_without_scheme(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "gpu-box:11434")
        assert OllamaBackend().host == "http://gpu-box:11434"

    def test_generate_when_model_present(self):
        backend = OllamaBackend("http://ollama:11434")
        with patch("nu_dash.ai.requests.post") as mock_post:
            mock_post.side_effect = [
                _response(200),
                _response(200, {"response": "  disk is nearly full  "}),
            ]
            text = backend.generate("why?", "llama3.2")

        assert text == "\ndisk is nearly full\n"
        urls = [c.args[0] for c in mock_post.call_args_list]
        assert urls == ["http://ollama:11434/api/show", "http://ollama:11434/api/generate"]
        payload = mock_post.call_args_list[1].kwargs["json"]
        assert payload == {"model": "llama3.2", "prompt": "why?", "stream": False}

    def test_pulls_missing_model(self):
        backend = OllamaBackend("http://ollama:11434")
        with patch("nu_dash.ai.requests.post") as mock_post:
            mock_post.side_effect = [
                _response(404, {"error": "model not found"}),
                _response(200, {"status": "success"}),
                _response(200, {"response": "ok"}),
            ]
            backend.generate("why?", "mistral")

        urls = [c.args[0].rsplit("/", 1)[-1] for c in mock_post.call_args_list]
        assert urls == ["show", "pull", "generate"]
        assert mock_post.call_args_list[1].kwargs["json"] == {"model": "mistral", "stream": False}

    def test_empty_model_uses_default(self):
        backend = OllamaBackend("http://ollama:11434")
        with patch("nu_dash.ai.requests.post") as mock_post:
            mock_post.side_effect = [_response(200), _response(200, {"response": "ok"})]
            backend.generate("why?", "")
        assert mock_post.call_args_list[1].kwargs["json"]["model"] == backend.default_model

    def test_connection_error(self):
        backend = OllamaBackend("http://ollama:11434")
        with patch("nu_dash.ai.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(GenerationError, match="refused"):
                backend.generate("why?", "llama3.2")

    def test_failed_pull(self):
        backend = OllamaBackend("http://ollama:11434")
        with patch("nu_dash.ai.requests.post") as mock_post:
            mock_post.side_effect = [
                _response(404),
                _response(500, {"error": "no space left"}),
            ]
            with pytest.raises(GenerationError, match="no space left"):
                backend.generate("why?", "llama3.2")

    def test_server_error_on_generate(self):
        backend = OllamaBackend("http://ollama:11434")
        with patch("nu_dash.ai.requests.post") as mock_post:
            mock_post.side_effect = [_response(200), _response(500, reason="Server Error")]
            with pytest.raises(GenerationError, match="500"):
                backend.generate("why?", "llama3.2")

    def test_non_json_body(self):
        backend = OllamaBackend("http://ollama:11434")
        html = _response(200)
        html.json.side_effect = ValueError("Expecting value")
        with patch("nu_dash.ai.requests.post") as mock_post:
            mock_post.side_effect = [_response(200), html]
            with pytest.raises(GenerationError, match="non-JSON"):
                backend.generate("why?", "llama3.2")

    def test_list_body(self):
        backend = OllamaBackend("http://ollama:11434")
        listing = _response(200)
        listing.json.return_value = ["not", "an", "object"]
        with patch("nu_dash.ai.requests.post") as mock_post:
            mock_post.side_effect = [_response(200), listing]
            with pytest.raises(GenerationError, match="list"):
                backend.generate("why?", "llama3.2")

    def test_error_status_with_list_body(self):
        backend = OllamaBackend("http://ollama:11434")
        failure = _response(502, reason="Bad Gateway")
        failure.json.return_value = []
        with patch("nu_dash.ai.requests.post", return_value=failure):
            with pytest.raises(GenerationError, match="Bad Gateway"):
                backend.generate("why?", "llama3.2")


class TestGeminiBackend:
    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(BackendConfigError):
            GeminiBackend()

    def test_key_from_env(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "AIza-test")
        assert GeminiBackend().api_key == "AIza-test"

    def test_generate_concatenates_parts(self):
        data = {
            "candidates": [
                {"content": {"parts": [{"text": "The disk "}, {"text": "is full."}]}},
                {"content": {"parts": [{"text": " Clean /tmp."}]}},
            ]
        }
        backend = GeminiBackend(api_key="AIza-test")
        with patch("nu_dash.ai.requests.post", return_value=_response(200, data)) as mock_post:
            text = backend.generate("why?", "")

        assert text == "The disk is full. Clean /tmp." + GEMINI_TRAILER
        assert mock_post.call_args.kwargs["params"] == {"key": "AIza-test"}
        assert backend.default_model in mock_post.call_args.args[0]

    def test_error_status(self):
        data = {"error": {"code": 400, "message": "API key not valid"}}
        backend = GeminiBackend(api_key="AIza-test")
        with patch("nu_dash.ai.requests.post", return_value=_response(400, data)):
            with pytest.raises(GenerationError, match="API key not valid"):
                backend.generate("why?", "gemini-pro")

    def test_request_error_hides_key(self):
        backend = GeminiBackend(api_key="AIza-secret")
        error = requests.ConnectionError("https://x/?key=AIza-secret unreachable")
        with patch("nu_dash.ai.requests.post", side_effect=error):
            with pytest.raises(GenerationError) as exc_info:
                backend.generate("why?", "gemini-pro")
        assert "AIza-secret" not in str(exc_info.value)

    def test_non_json_body(self):
        backend = GeminiBackend(api_key="AIza-test")
        html = _response(200)
        html.json.side_effect = ValueError("Expecting value")
        with patch("nu_dash.ai.requests.post", return_value=html):
            with pytest.raises(GenerationError, match="non-JSON"):
                backend.generate("why?", "gemini-pro")

    def test_list_body(self):
        backend = GeminiBackend(api_key="AIza-test")
        listing = _response(200)
        listing.json.return_value = [{"candidates": []}]
        with patch("nu_dash.ai.requests.post", return_value=listing):
            with pytest.raises(GenerationError):
                backend.generate("why?", "gemini-pro")

    def test_malformed_candidates(self):
        backend = GeminiBackend(api_key="AIza-test")
        data = {"candidates": ["just a string"]}
        with patch("nu_dash.ai.requests.post", return_value=_response(200, data)):
            with pytest.raises(GenerationError, match="unexpected shape"):
                backend.generate("why?", "gemini-pro")


class TestResponseToText:
    def test_empty_response(self):
        assert response_to_text({}) == GEMINI_TRAILER

    def test_parts_without_text(self):
        data = {"candidates": [{"content": {"parts": [{"inline_data": {}}]}}]}
        assert response_to_text(data) == GEMINI_TRAILER


class TestMakeBackend:
    def test_ollama(self):
        assert isinstance(make_backend("ollama"), OllamaBackend)

    def test_gemini_without_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(BackendConfigError):
            make_backend("gemini")

    def test_unknown(self):
        with pytest.raises(BackendConfigError, match="unknown"):
            make_backend("openai")
