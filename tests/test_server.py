"""
Tests for the HTTP surface of the proxy.

The NIM backend is replaced by an httpx.MockTransport so every test sees
exactly what the proxy sent upstream and what it returned to the caller.
"""

import logging

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import TEST_API_KEY, backend_completion, make_config
from nim_proxy.client import DEFAULT_MODEL_MAPPING
from nim_proxy.server import create_app


def chat_body(**overrides) -> dict:
    body = {"model": "gpt-4", "messages": [{"role": "user", "content": "Hello"}]}
    body.update(overrides)
    return body


class TestHealth:
    def test_reports_status_and_backend(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "service": "OpenAI to NVIDIA NIM Proxy",
            "api_key_set": True,
            "api_base": "https://integrate.api.nvidia.com/v1",
        }

    def test_never_exposes_api_key(self, client):
        response = client.get("/health")

        assert TEST_API_KEY not in response.text

    def test_missing_api_key_does_not_prevent_startup(self, tmp_path, backend):
        config = make_config(tmp_path, NIM_API_KEY="")
        app = create_app(config, transport=httpx.MockTransport(backend.handler))

        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["api_key_set"] is False


class TestListModels:
    def test_one_descriptor_per_mapping_entry(self, client):
        response = client.get("/v1/models")

        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "list"
        assert [model["id"] for model in data["data"]] == list(DEFAULT_MODEL_MAPPING)

    def test_descriptor_shape(self, client):
        model = client.get("/v1/models").json()["data"][0]

        assert model["object"] == "model"
        assert model["owned_by"] == "nvidia-nim-proxy"
        assert isinstance(model["created"], int)

    def test_lists_models_from_models_file(self, tmp_path, backend):
        (tmp_path / "models.yaml").write_text(
            "default_model: fast\nmodels:\n  fast: meta/llama-3.1-8b-instruct\n  smart: meta/llama-3.1-405b-instruct\n"
        )
        app = create_app(make_config(tmp_path), transport=httpx.MockTransport(backend.handler))

        with TestClient(app) as client:
            data = client.get("/v1/models").json()["data"]

        assert [model["id"] for model in data] == ["fast", "smart"]


class TestChatCompletionBuffered:
    def test_sends_mapped_model_with_defaults(self, client, backend):
        client.post("/v1/chat/completions", json=chat_body())

        assert backend.last_json == {
            "model": "qwen/qwen3-coder-480b-a35b-instruct",
            "messages": [{"role": "user", "content": "Hello"}],
            "temperature": 0.7,
            "max_tokens": 2048,
            "stream": False,
        }

    def test_calls_completions_endpoint_with_bearer_token(self, client, backend):
        client.post("/v1/chat/completions", json=chat_body())

        request = backend.last_request
        assert request.method == "POST"
        assert str(request.url) == "https://integrate.api.nvidia.com/v1/chat/completions"
        assert request.headers["Authorization"] == f"Bearer {TEST_API_KEY}"
        assert request.headers["Content-Type"] == "application/json"

    def test_forwards_explicit_parameters(self, client, backend):
        client.post(
            "/v1/chat/completions",
            json=chat_body(temperature=0, max_tokens=10, top_p=0.5),
        )

        sent = backend.last_json
        assert sent["temperature"] == 0
        assert sent["max_tokens"] == 10
        assert "top_p" not in sent

    def test_unknown_model_uses_default_mapping(self, client, backend):
        response = client.post("/v1/chat/completions", json=chat_body(model="my-own-model"))

        assert response.status_code == 200
        assert backend.last_json["model"] == "deepseek-ai/deepseek-v3.1"
        assert response.json()["model"] == "my-own-model"

    def test_response_reports_requested_model(self, client):
        response = client.post("/v1/chat/completions", json=chat_body(model="claude-3-haiku"))

        body = response.json()
        assert response.status_code == 200
        assert body["model"] == "claude-3-haiku"
        assert body["object"] == "chat.completion"
        assert body["id"].startswith("chatcmpl-")
        assert body["choices"] == [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hello!"},
                "finish_reason": "stop",
            }
        ]
        assert body["usage"] == {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}

    def test_missing_usage_and_fields_get_defaults(self, client, backend):
        backend.responder = lambda request: httpx.Response(
            200, json={"choices": [{"index": 0, "message": {}}]}
        )

        body = client.post("/v1/chat/completions", json=chat_body()).json()

        assert body["choices"][0] == {
            "index": 0,
            "message": {"role": "assistant", "content": ""},
            "finish_reason": "stop",
        }
        assert body["usage"] == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


class TestChatCompletionErrors:
    def test_backend_rate_limit_is_passed_through(self, client, backend):
        backend.responder = lambda request: httpx.Response(
            429, json={"detail": "Too many requests, slow down"}
        )

        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 429
        assert response.json() == {
            "error": {
                "message": "Too many requests, slow down",
                "type": "rate_limit_error",
                "code": 429,
            }
        }

    def test_backend_openai_style_error_message(self, client, backend):
        backend.responder = lambda request: httpx.Response(
            401, json={"error": {"message": "Invalid API key", "type": "auth"}}
        )

        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid API key"
        assert response.json()["error"]["code"] == 401

    def test_backend_error_without_message(self, client, backend):
        backend.responder = lambda request: httpx.Response(503)

        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 503
        assert response.json()["error"]["message"] == "Request failed with status code 503"
        assert response.json()["error"]["type"] == "api_error"

    def test_transport_failure_returns_500(self, client, backend):
        def refuse(request):
            raise httpx.ConnectError("Connection refused")

        backend.responder = refuse

        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 500
        assert response.json()["error"]["code"] == 500
        assert response.json()["error"]["type"] == "api_error"

    def test_malformed_backend_body_returns_502(self, client, backend):
        backend.responder = lambda request: httpx.Response(200, text="<html>oops</html>")

        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 502
        assert response.json()["error"]["code"] == 502

    def test_backend_body_without_choices_returns_502(self, client, backend):
        backend.responder = lambda request: httpx.Response(200, json={"object": "chat.completion"})

        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 502

    def test_backend_choice_with_invalid_finish_reason_returns_502(self, client, backend):
        body = backend_completion()
        body["choices"][0]["finish_reason"] = 7
        backend.responder = lambda request: httpx.Response(200, json=body)

        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 502
        assert response.json()["error"]["message"] == "Invalid response from backend"

    def test_invalid_json_body_is_rejected(self, client, backend):
        response = client.post(
            "/v1/chat/completions",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_request_error"
        assert backend.requests == []

    @pytest.mark.parametrize("status_code", [400, 401, 429, 500])
    def test_error_responses_never_contain_api_key(self, client, backend, status_code):
        backend.responder = lambda request: httpx.Response(
            status_code, json={"detail": "backend failure"}
        )

        response = client.post("/v1/chat/completions", json=chat_body())

        assert TEST_API_KEY not in response.text

    def test_proxy_keeps_serving_after_an_error(self, client, backend):
        backend.responder = lambda request: httpx.Response(500, json={"detail": "boom"})
        assert client.post("/v1/chat/completions", json=chat_body()).status_code == 500

        backend.responder = lambda request: httpx.Response(200, json=backend_completion())
        assert client.post("/v1/chat/completions", json=chat_body()).status_code == 200


class TestChatCompletionStreaming:
    CHUNKS = [
        b'data: {"choices":[{"index":0,"delta":{"role":"assistant"}}]}\n\n',
        b'data: {"choices":[{"index":0,"delta":{"content":"Hel"}}]}\n\n',
        b'data: {"choices":[{"index":0,"delta":{"content":"lo"}}]}\n\n',
        b"data: [DONE]\n\n",
    ]

    def stream_responder(self, request):
        async def body():
            for chunk in self.CHUNKS:
                yield chunk

        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=body())

    def test_relays_backend_stream_verbatim(self, client, backend):
        backend.responder = self.stream_responder

        response = client.post("/v1/chat/completions", json=chat_body(stream=True))

        assert response.status_code == 200
        assert response.content == b"".join(self.CHUNKS)

    def test_sets_event_stream_headers(self, client, backend):
        backend.responder = self.stream_responder

        response = client.post("/v1/chat/completions", json=chat_body(stream=True))

        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["connection"] == "keep-alive"

    def test_requests_stream_from_backend(self, client, backend):
        backend.responder = self.stream_responder

        client.post("/v1/chat/completions", json=chat_body(stream=True))

        assert backend.last_json["stream"] is True
        assert backend.last_json["model"] == "qwen/qwen3-coder-480b-a35b-instruct"

    def test_backend_error_before_stream_is_an_error_response(self, client, backend):
        backend.responder = lambda request: httpx.Response(
            429, json={"detail": "Rate limit exceeded"}
        )

        response = client.post("/v1/chat/completions", json=chat_body(stream=True))

        assert response.status_code == 429
        assert response.json()["error"]["message"] == "Rate limit exceeded"

    def test_backend_failure_mid_stream_drops_connection_with_one_line_log(
        self, client, backend, caplog
    ):
        def failing_responder(request):
            async def body():
                for chunk in self.CHUNKS[:2]:
                    yield chunk
                raise httpx.ReadError("Connection reset by peer")

            return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=body())

        backend.responder = failing_responder
        caplog.set_level(logging.INFO, logger="nim_proxy.midstream_abort")

        response = client.post("/v1/chat/completions", json=chat_body(stream=True))

        assert response.status_code == 200
        assert response.content == b"".join(self.CHUNKS[:2])
        assert "[mid-stream abort] backend stream failed after 2 chunks: ReadError" in caplog.text


class TestUnmatchedRoutes:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/v1/unknown"),
            ("POST", "/v1/completions"),
            ("GET", "/v1/chat/completions"),
            ("DELETE", "/health"),
            ("GET", "/"),
            ("TRACE", "/v1/whatever"),
            ("TRACE", "/health"),
        ],
    )
    def test_returns_uniform_404(self, client, method, path):
        response = client.request(method, path)

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == 404
        assert error["type"] == "invalid_request_error"
        assert path in error["message"]


class TestCors:
    def test_preflight_allowed_for_any_origin_by_default(self, client):
        response = client.options(
            "/v1/chat/completions",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_configured_origins_only(self, tmp_path, backend):
        config = make_config(tmp_path, CORS_ORIGINS="https://app.example.com")
        app = create_app(config, transport=httpx.MockTransport(backend.handler))

        with TestClient(app) as client:
            allowed = client.get("/health", headers={"Origin": "https://app.example.com"})
            other = client.get("/health", headers={"Origin": "https://evil.example.com"})

        assert allowed.headers["access-control-allow-origin"] == "https://app.example.com"
        assert "access-control-allow-origin" not in other.headers
