"""
Model mapping and backend client management.
This module owns the caller-name -> NIM-name table and the httpx client
used to reach the NIM backend.
"""

import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

import httpx
import yaml

from .config import Config
from .types import ModelDefaults

logger = logging.getLogger(__name__)

# Caller-facing model name -> NVIDIA NIM model name
DEFAULT_MODEL_MAPPING = {
    "gpt-3.5-turbo": "nvidia/llama-3.1-nemotron-ultra-253b-v1",
    "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
    "gpt-4-turbo": "moonshotai/kimi-k2.5",
    "gpt-4o": "deepseek-ai/deepseek-v3.1",
    "gpt-4o-mini": "deepseek-ai/deepseek-v3.2",
    "o1": "deepseek-ai/deepseek-v3.1-terminus",
    "claude-3-opus": "openai/gpt-oss-120b",
    "claude-3-sonnet": "openai/gpt-oss-20b",
    "claude-3-haiku": "qwen/qwen3-235b-a22b",
    "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
}


class ModelMappingError(ValueError):
    """Raised when a model mapping cannot be built."""


class ModelMapping(Mapping):
    """Immutable caller-name -> backend-name table with a default entry.

    Iteration follows insertion order. Lookups through resolve() never fail:
    unknown names map to the default entry's backend model.
    """

    def __init__(self, models: Mapping[str, str], default_model: str):
        if not models:
            raise ModelMappingError("Model mapping must contain at least one entry")
        if default_model not in models:
            raise ModelMappingError(
                f"Default model '{default_model}' is not one of the mapped models: "
                f"{', '.join(models)}"
            )
        self._models = MappingProxyType({str(k): str(v) for k, v in models.items()})
        self._default_model = default_model

    def __getitem__(self, key: str) -> str:
        return self._models[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"ModelMapping({dict(self._models)!r}, default_model={self._default_model!r})"

    @property
    def default_model(self) -> str:
        return self._default_model

    @property
    def default_backend_model(self) -> str:
        return self._models[self._default_model]

    def is_known(self, model) -> bool:
        return isinstance(model, str) and model in self._models

    def resolve(self, model) -> str:
        """Return the backend model name for a caller model name."""
        if self.is_known(model):
            return self._models[model]
        return self.default_backend_model


def load_models_file(models_file: Path) -> tuple[dict[str, str], str | None] | None:
    """Load a models.yaml file.

    Returns:
        (models, default_model) or None when the file is missing, unreadable
        or has no models.
    """
    models_file = Path(models_file)
    if not models_file.exists():
        logger.debug(f"Models file not found: {models_file}")
        return None

    try:
        with models_file.open(encoding="utf-8") as file:
            data = yaml.safe_load(file)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load models file {models_file}: {e}")
        return None

    if not isinstance(data, dict) or not isinstance(data.get("models"), dict) or not data["models"]:
        logger.warning(f"No models found in models file: {models_file}")
        return None

    models = {}
    for model_id, model_name in data["models"].items():
        if model_name is None or isinstance(model_name, (dict, list)):
            logger.warning(f"Invalid mapping for model '{model_id}' in {models_file}, skipping")
            continue
        models[str(model_id)] = str(model_name)

    if not models:
        logger.warning(f"No valid models found in models file: {models_file}")
        return None

    default_model = data.get("default_model")
    return models, str(default_model) if default_model is not None else None


def build_model_mapping(config: Config) -> ModelMapping:
    """Build the process-wide model mapping from configuration.

    The models file replaces the built-in table when it exists. The default
    entry comes from the models file, then DEFAULT_MODEL / config.json.
    """
    models = DEFAULT_MODEL_MAPPING
    default_model = config.default_model

    loaded = load_models_file(config.models_file)
    if loaded is not None:
        models, file_default = loaded
        default_model = file_default or default_model
        logger.info(f"Loaded {len(models)} models from {config.models_file}")

    mapping = ModelMapping(models, default_model)
    for model_id, model_name in mapping.items():
        logger.debug(f"Model: {model_id} -> {model_name}")
    logger.info(
        f"Default model: {mapping.default_model} -> {mapping.default_backend_model}"
    )
    return mapping


def create_backend_client(
    config: Config, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """Create the shared httpx client used for every backend call."""
    headers = {"Content-Type": "application/json"}
    if config.api_key:
        headers["Authorization"] = f"Bearer {config.api_key}"
    else:
        logger.warning("NIM_API_KEY is not set; backend calls will be unauthenticated")

    timeout = httpx.Timeout(
        config.request_timeout, connect=ModelDefaults.DEFAULT_CONNECT_TIMEOUT
    )
    return httpx.AsyncClient(
        base_url=config.api_base,
        headers=headers,
        timeout=timeout,
        transport=transport,
    )
