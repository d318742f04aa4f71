"""Shared fixtures: a Config isolated from the user's files and a fake NIM backend."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from nim_proxy.config import Config
from nim_proxy.server import create_app

TEST_API_KEY = "nvapi-test-0123456789abcdefghijklmnop"


def make_config(tmp_path, **env) -> Config:
    environ = {
        "NIM_API_KEY": TEST_API_KEY,
        "MODELS_FILE": str(tmp_path / "models.yaml"),
    }
    environ.update(env)
    return Config(config_path=tmp_path / "config.json", environ=environ)


def backend_completion(content="Hello!", **overrides) -> dict:
    """A typical buffered NIM chat completion body."""
    body = {
        "id": "cmpl-nim-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "deepseek-ai/deepseek-v3.1",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }
    body.update(overrides)
    return body


class FakeBackend:
    """Records every request and answers with ``responder``."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responder = lambda request: httpx.Response(200, json=backend_completion())

    def handler(self, request: httpx.Request):
        self.requests.append(request)
        return self.responder(request)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def client(config, backend):
    app = create_app(config, transport=httpx.MockTransport(backend.handler))
    with TestClient(app) as test_client:
        yield test_client
