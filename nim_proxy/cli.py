"""
Command-line interface for nim-proxy.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import uvicorn

from .client import ModelMappingError, build_model_mapping
from .config import Config, load_env_file, setup_logging
from .config_manager import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    DEFAULT_LOG_DIR,
    DEFAULT_MODELS_FILE,
    create_default_config_file,
    create_default_models_file,
    ensure_log_dir,
)
from .server import create_app

logger = logging.getLogger(__name__)


# ANSI color codes for terminal output
class Colors:
    GREEN = "\033[92m"
    RED = "\033[91m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RESET = "\033[0m"


def load_config(args: argparse.Namespace) -> Config:
    """Build the effective configuration from .env, config.json and CLI flags."""
    load_env_file()
    config = Config(config_path=getattr(args, "config", None))

    if getattr(args, "host", None):
        config.host = args.host
    if getattr(args, "port", None):
        config.port = args.port
    if getattr(args, "models", None):
        config.models_file = Path(args.models).expanduser()
    return config


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the proxy in the foreground."""
    config = load_config(args)
    setup_logging(config)

    try:
        app = create_app(config)
    except ModelMappingError as e:
        logger.error(f"Invalid model configuration: {e}")
        sys.exit(1)

    logger.info(f"OpenAI to NVIDIA NIM Proxy running on port {config.port}")
    logger.info(f"Health check: http://localhost:{config.port}/health")

    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize config directory with default files."""
    c = Colors
    force_config = getattr(args, "force", False)

    print(f"\n{c.BOLD}Initializing NIM Proxy Configuration{c.RESET}")
    print("=" * 50)

    models_exists = DEFAULT_MODELS_FILE.exists()
    config_exists = DEFAULT_CONFIG_FILE.exists()

    # Models file: never overwrite (user's custom mapping)
    if not models_exists:
        create_default_models_file(force=False)
        print(f"  {c.GREEN}Created:{c.RESET}  {DEFAULT_MODELS_FILE}")
    else:
        print(f"  {c.CYAN}Exists:{c.RESET}   {DEFAULT_MODELS_FILE}")

    # Config file: overwrite only with --force
    if not config_exists or force_config:
        create_default_config_file(force=force_config)
        action = "Reset" if force_config and config_exists else "Created"
        print(f"  {c.GREEN}{action}:{c.RESET}  {DEFAULT_CONFIG_FILE}")
    else:
        print(f"  {c.CYAN}Exists:{c.RESET}   {DEFAULT_CONFIG_FILE}")

    ensure_log_dir()

    print(f"\n{c.DIM}Directories:{c.RESET}")
    print(f"  {c.CYAN}Config:{c.RESET} {DEFAULT_CONFIG_DIR}")
    print(f"  {c.CYAN}Logs:{c.RESET}   {DEFAULT_LOG_DIR}")

    print(f"\n{c.DIM}Next steps:{c.RESET}")
    print(f"  1. Set {c.BOLD}NIM_API_KEY{c.RESET} in your environment or a .env file")
    print(f"  2. Edit {c.BOLD}models.yaml{c.RESET} to change the model mapping")
    print(f"  3. Run: {c.BOLD}nim-proxy serve{c.RESET}")
    print()


def cmd_config(args: argparse.Namespace) -> None:
    """Print the effective configuration."""
    config = load_config(args)
    print(json.dumps(config.as_dict(show_api_key=args.show_api_key), indent=2))


def cmd_models(args: argparse.Namespace) -> None:
    """Print the effective model mapping."""
    c = Colors
    config = load_config(args)
    try:
        mapping = build_model_mapping(config)
    except ModelMappingError as e:
        print(f"{c.RED}Invalid model configuration:{c.RESET} {e}")
        sys.exit(1)

    width = max(len(model_id) for model_id in mapping)
    for model_id, model_name in mapping.items():
        marker = f" {c.GREEN}(default){c.RESET}" if model_id == mapping.default_model else ""
        print(f"  {model_id.ljust(width)}  ->  {model_name}{marker}")


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to config.json configuration file",
    )
    parser.add_argument(
        "--models",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to models.yaml model mapping file",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="nim-proxy",
        description="OpenAI to NVIDIA NIM API proxy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nim-proxy init                 Initialize config files
  nim-proxy serve                Run the proxy in the foreground
  nim-proxy serve --port 8080    Run on a custom port
  nim-proxy models               Show the model mapping
  nim-proxy config               Show the effective configuration
        """,
    )
    subparsers = parser.add_subparsers(dest="command", title="commands")

    serve_parser = subparsers.add_parser("serve", help="Run the proxy server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    _add_config_arguments(serve_parser)
    serve_parser.set_defaults(func=cmd_serve)

    init_parser = subparsers.add_parser("init", help="Create default config files")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Reset config.json to defaults (models.yaml is never overwritten)",
    )
    init_parser.set_defaults(func=cmd_init)

    config_parser = subparsers.add_parser("config", help="Print the effective configuration")
    _add_config_arguments(config_parser)
    config_parser.add_argument(
        "--show-api-key",
        action="store_true",
        help="Show the actual API key value (default: redacted)",
    )
    config_parser.set_defaults(func=cmd_config)

    models_parser = subparsers.add_parser("models", help="Print the model mapping")
    _add_config_arguments(models_parser)
    models_parser.set_defaults(func=cmd_models)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: list[str] | None = None):
    """Main CLI entry point. Without a command the server is started."""
    args = parse_args(argv)
    if not hasattr(args, "func"):
        args = parse_args(["serve"])
    args.func(args)
