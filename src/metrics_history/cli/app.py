"""Command line application entry point for metrics history."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from ..configuration import load_config
from ..logging.config import setup_logging
from .errors import CliError, log_cli_error
from .parser import build_parser


def run_cli(args: Optional[Sequence[str]] = None) -> str:
    """Execute the metrics history command line interface."""

    config_parser = argparse.ArgumentParser(add_help=False)
    config_parser.add_argument("--config", dest="config_path", type=Path, default=None)
    config_parser.add_argument("--log-level", dest="log_level", default=None)
    config_parser.add_argument("--log-output", dest="log_output", default=None)
    config_parser.add_argument(
        "--log-format", dest="log_format", choices=("json", "text"), default=None
    )
    preliminary, _ = config_parser.parse_known_args(args)

    config = load_config(preliminary.config_path)
    logging_config = dict(config.get("logging", {}))
    if preliminary.log_level is not None:
        logging_config["level"] = preliminary.log_level
    if preliminary.log_output is not None:
        logging_config["output"] = preliminary.log_output
    if preliminary.log_format is not None:
        logging_config["format"] = preliminary.log_format
    logging_config.setdefault("level", "info")
    logging_config.setdefault("output", "stderr")
    logging_config.setdefault("format", "json")
    config["logging"] = logging_config
    setup_logging(config)

    parser = build_parser(config)
    namespace = parser.parse_args(args)
    namespace.config = config

    try:
        result = namespace.handler(namespace, config=config)
    except CliError as exc:
        if not exc.logged:
            log_cli_error(exc.payload)
            exc.logged = True
        message = exc.payload.message
        if message:
            sys.stdout.write(message)
            if not message.endswith("\n"):
                sys.stdout.write("\n")
        raise SystemExit(exc.status_code) from exc
    if result:
        sys.stdout.write(result)
        if not result.endswith("\n"):
            sys.stdout.write("\n")
    return result


def main() -> None:  # pragma: no cover - thin wrapper
    run_cli()


if __name__ == "__main__":  # pragma: no cover - CLI invocation guard
    main()
