"""
Configuration management for the nim_proxy package.
This module handles configuration loading, secret redaction and logging setup.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from .config_manager import DEFAULT_CONFIG_FILE, DEFAULT_MODELS_FILE, load_config_file
from .types import ModelDefaults

logger = logging.getLogger(__name__)

REDACTED_PREFIX_LENGTH = 6


def redact_secret(value: str | None) -> str:
    """Return a short, non-reversible rendering of a credential for logs.

    Examples:
        redact_secret("nvapi-abcdefghijklmnopqrstuvwxyz") -> "nvapi-..."
        redact_secret("short") -> "***"
        redact_secret(None) -> "<not set>"
    """
    if not value:
        return "<not set>"
    if len(value) <= REDACTED_PREFIX_LENGTH * 2:
        return "***"
    return f"{value[:REDACTED_PREFIX_LENGTH]}..."


def parse_float(value, default_value: float) -> float:
    if value is None or value == "":
        return default_value
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Could not parse number '{value}', using default {default_value}")
        return default_value


def parse_origins(value) -> list[str]:
    """Parse CORS origins from a comma separated string or a list."""
    if value is None:
        return ["*"]
    if isinstance(value, str):
        origins = [origin.strip() for origin in value.split(",")]
    else:
        origins = [str(origin).strip() for origin in value]
    return [origin for origin in origins if origin] or ["*"]


def load_env_file(env_path: Path | None = None) -> bool:
    """Load a .env file into os.environ without overriding existing variables.

    Returns:
        True if a file was found and loaded
    """
    dotenv_path = str(env_path) if env_path else find_dotenv(usecwd=True)
    if not dotenv_path:
        return False
    loaded = load_dotenv(dotenv_path, override=False)
    if loaded:
        logger.debug(f"Loaded environment from {dotenv_path}")
    return loaded


class Config:
    """Proxy server configuration, read once at startup.

    Priority for every setting: environment variable > config.json > default.
    The API key is only ever read from the environment.
    """

    def __init__(self, config_path: Path | None = None, environ: dict | None = None):
        env = os.environ if environ is None else environ
        file_config = load_config_file(config_path)

        # Server configuration
        self.host = env.get("HOST", file_config.get("host", ModelDefaults.DEFAULT_HOST))
        self.port = int(env.get("PORT", file_config.get("port", ModelDefaults.DEFAULT_PORT)))

        # Backend configuration
        self.api_base = env.get(
            "NIM_API_BASE", file_config.get("api_base", ModelDefaults.DEFAULT_API_BASE)
        ).rstrip("/")
        self.api_key = env.get("NIM_API_KEY") or None
        self.request_timeout = parse_float(
            env.get("REQUEST_TIMEOUT", file_config.get("request_timeout")),
            ModelDefaults.DEFAULT_REQUEST_TIMEOUT,
        )

        # Model mapping configuration
        self.default_model = env.get(
            "DEFAULT_MODEL", file_config.get("default_model", ModelDefaults.DEFAULT_MODEL)
        )
        self.models_file = Path(
            env.get("MODELS_FILE", file_config.get("models_file", str(DEFAULT_MODELS_FILE)))
        ).expanduser()

        # Logging configuration
        self.log_level = env.get(
            "LOG_LEVEL", file_config.get("log_level", ModelDefaults.DEFAULT_LOG_LEVEL)
        )
        log_path = env.get("LOG_FILE_PATH", file_config.get("log_file_path"))
        self.log_file_path = Path(log_path).expanduser() if log_path else None

        self.cors_origins = parse_origins(env.get("CORS_ORIGINS", file_config.get("cors_origins")))

        self.config_file = Path(config_path) if config_path else DEFAULT_CONFIG_FILE

    @property
    def api_key_set(self) -> bool:
        return bool(self.api_key)

    @property
    def redacted_api_key(self) -> str:
        return redact_secret(self.api_key)

    @property
    def completions_url(self) -> str:
        return f"{self.api_base}/chat/completions"

    def as_dict(self, show_api_key: bool = False) -> dict:
        """Effective configuration, with the API key redacted unless asked."""
        return {
            "host": self.host,
            "port": self.port,
            "api_base": self.api_base,
            "api_key": self.api_key if show_api_key else self.redacted_api_key,
            "request_timeout": self.request_timeout,
            "default_model": self.default_model,
            "models_file": str(self.models_file),
            "log_level": self.log_level,
            "log_file_path": str(self.log_file_path) if self.log_file_path else None,
            "cors_origins": self.cors_origins,
            "config_file": str(self.config_file),
        }


class MessageFilter(logging.Filter):
    """Drop noisy library messages and mask the API key in everything else."""

    blocked_phrases = ("HTTP Request:",)

    def __init__(self, secret: str | None = None):
        super().__init__()
        self.secret = secret

    def filter(self, record):
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        for phrase in self.blocked_phrases:
            if phrase in message:
                return False

        if self.secret and self.secret in message:
            record.msg = message.replace(self.secret, redact_secret(self.secret))
            record.args = None

        return True


class ColorizedFormatter(logging.Formatter):
    """Custom formatter to highlight model mappings"""

    GREEN = "\033[92m"
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record):
        formatted = super().format(record)
        if "MODEL MAPPING" in record.getMessage():
            return f"{self.BOLD}{self.GREEN}{formatted}{self.RESET}"
        return formatted


def setup_logging(config: Config):
    """Setup logging configuration to be idempotent."""
    root_logger = logging.getLogger()
    log_level_str = str(config.log_level).upper()
    log_level = getattr(logging, log_level_str, None)
    if not isinstance(log_level, int):
        logger.warning(f"Invalid log level: {log_level_str}, using INFO")
        log_level = logging.INFO

    root_logger.setLevel(log_level)

    # Configure uvicorn log levels
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # For access logs, only enable them at DEBUG or INFO levels
    uvicorn_access_logger = logging.getLogger("uvicorn.access")
    if log_level <= logging.INFO:
        uvicorn_access_logger.setLevel(logging.INFO)
        uvicorn_access_logger.propagate = True
    else:
        uvicorn_access_logger.setLevel(logging.WARNING)
        uvicorn_access_logger.propagate = False

    httpx_level = logging.INFO if log_level <= logging.DEBUG else logging.WARNING
    logging.getLogger("httpx").setLevel(httpx_level)
    logging.getLogger("httpcore").setLevel(httpx_level)

    # Only add handlers if they don't exist yet
    if root_logger.hasHandlers():
        return

    message_filter = MessageFilter(config.api_key)
    log_format = "%(asctime)s - %(levelname)s - %(message)s"

    try:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(ColorizedFormatter(log_format))
        stream_handler.addFilter(message_filter)
        root_logger.addHandler(stream_handler)

        if config.log_file_path:
            log_dir = Path(config.log_file_path).parent
            if not log_dir.exists():
                log_dir.mkdir(parents=True, exist_ok=True)

            # Rotating file handler with 2MB max size and 1 backup log
            file_handler = RotatingFileHandler(
                config.log_file_path,
                mode="a",
                maxBytes=2 * 1024 * 1024,
                backupCount=1,
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter(log_format))
            file_handler.addFilter(message_filter)
            root_logger.addHandler(file_handler)

        logger.info("Logging configured for server.")

    except OSError as e:
        logger.critical(f"Error setting up logging: {e}")
        sys.exit(1)
