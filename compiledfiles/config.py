from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from rich.console import Console
from rich.logging import RichHandler


LOG_LEVEL_ENV = "COMPILEDFILES_LOG_LEVEL"
FORMAT_ENV = "COMPILEDFILES_FORMAT"

DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_FORMAT = "table"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
OUTPUT_FORMATS = ("table", "json", "plain")


@dataclass(slots=True)
class Settings:
    log_level: str = DEFAULT_LOG_LEVEL
    output_format: str = DEFAULT_FORMAT


def normalize_log_level(value: str) -> str:
    level = (value or "").strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level {value!r}. Use one of: {', '.join(LOG_LEVELS)}.")
    return level


def normalize_output_format(value: str) -> str:
    output_format = (value or "").strip().lower()
    if output_format not in OUTPUT_FORMATS:
        raise ValueError(
            f"Invalid output format {value!r}. Use one of: {', '.join(OUTPUT_FORMATS)}."
        )
    return output_format


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        log_level=normalize_log_level(env.get(LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL),
        output_format=normalize_output_format(env.get(FORMAT_ENV) or DEFAULT_FORMAT),
    )


def configure_logging(level: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, normalize_log_level(level)))
    root.handlers.clear()

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    root.addHandler(handler)
