"""
Configuration directory and file management.
Handles initialization, creation, and loading of config files.
"""

import json
import logging
from pathlib import Path

from .types import ModelDefaults

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "nim-proxy"
DEFAULT_LOG_DIR = Path.home() / ".nim-proxy"
DEFAULT_MODELS_FILE = DEFAULT_CONFIG_DIR / "models.yaml"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"

# Default models.yaml template
DEFAULT_MODELS_TEMPLATE = """# NVIDIA NIM Proxy Model Mapping
# Maps the model names callers send (OpenAI-style) to NIM model names.
#
# default_model: must be one of the keys under `models`. Requests for a
#                model that is not listed are sent to its backend model.
# models:        caller name -> backend name, listed in the order that
#                GET /v1/models returns them.

default_model: gpt-4o

models:
  gpt-3.5-turbo: nvidia/llama-3.1-nemotron-ultra-253b-v1
  gpt-4: qwen/qwen3-coder-480b-a35b-instruct
  gpt-4-turbo: moonshotai/kimi-k2.5
  gpt-4o: deepseek-ai/deepseek-v3.1
  gpt-4o-mini: deepseek-ai/deepseek-v3.2
  o1: deepseek-ai/deepseek-v3.1-terminus
  claude-3-opus: openai/gpt-oss-120b
  claude-3-sonnet: openai/gpt-oss-20b
  claude-3-haiku: qwen/qwen3-235b-a22b
  gemini-pro: qwen/qwen3-next-80b-a3b-thinking
"""

# Default config.json template. The API key is never stored here; it is
# read from NIM_API_KEY only.
DEFAULT_CONFIG_TEMPLATE = {
    "log_level": ModelDefaults.DEFAULT_LOG_LEVEL,
    "log_file_path": str(DEFAULT_LOG_DIR / "server.log"),
    "host": ModelDefaults.DEFAULT_HOST,
    "port": ModelDefaults.DEFAULT_PORT,
    "api_base": ModelDefaults.DEFAULT_API_BASE,
    "request_timeout": ModelDefaults.DEFAULT_REQUEST_TIMEOUT,
}


def ensure_config_dir() -> Path:
    """Ensure config directory exists, create if missing.

    Returns:
        Path to config directory
    """
    config_dir = DEFAULT_CONFIG_DIR
    if not config_dir.exists():
        logger.info(f"Creating config directory: {config_dir}")
        config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def ensure_log_dir() -> Path:
    """Ensure log directory exists, create if missing.

    Returns:
        Path to log directory
    """
    log_dir = DEFAULT_LOG_DIR
    if not log_dir.exists():
        logger.info(f"Creating log directory: {log_dir}")
        log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def create_default_models_file(force: bool = False) -> Path:
    """Create default models.yaml file if it doesn't exist.

    Args:
        force: If True, overwrite existing file

    Returns:
        Path to models.yaml file
    """
    ensure_config_dir()
    models_file = DEFAULT_MODELS_FILE

    if models_file.exists() and not force:
        logger.debug(f"Models file already exists: {models_file}")
        return models_file

    logger.info(f"Creating default models file: {models_file}")
    models_file.write_text(DEFAULT_MODELS_TEMPLATE, encoding="utf-8")
    return models_file


def create_default_config_file(force: bool = False) -> Path:
    """Create default config.json file if it doesn't exist.

    Args:
        force: If True, overwrite existing file

    Returns:
        Path to config.json file
    """
    ensure_config_dir()
    config_file = DEFAULT_CONFIG_FILE

    if config_file.exists() and not force:
        logger.debug(f"Config file already exists: {config_file}")
        return config_file

    logger.info(f"Creating default config file: {config_file}")
    with config_file.open("w", encoding="utf-8") as f:
        json.dump(DEFAULT_CONFIG_TEMPLATE, f, indent=2)
    return config_file


def load_config_file(config_path: Path | None = None) -> dict:
    """Load config.json file.

    Args:
        config_path: Path to config file. If None, uses default location.

    Returns:
        Config dictionary. Empty dict if file doesn't exist or is invalid.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        logger.debug(f"Config file not found: {config_path}")
        return {}

    try:
        with config_path.open("r", encoding="utf-8") as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in config file {config_path}: {e}")
        return {}
    except OSError as e:
        logger.error(f"Error loading config file {config_path}: {e}")
        return {}

    if not isinstance(config, dict):
        logger.error(f"Config file {config_path} must contain a JSON object")
        return {}

    logger.debug(f"Loaded config from: {config_path}")
    return config
