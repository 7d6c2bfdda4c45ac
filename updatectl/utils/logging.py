"""structlog configuration shared by the CLI and the webhook server."""

from __future__ import annotations

import logging
import sys

import structlog

from updatectl.config import Settings, settings


def setup_logging(cfg: Settings | None = None, *, level: str | None = None) -> None:
    """Configure structlog; safe to call more than once."""
    cfg = cfg or settings
    lvl = getattr(logging, (level or cfg.log_level).upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=lvl)
    logging.getLogger().setLevel(lvl)
    # paramiko is chatty at INFO
    logging.getLogger("paramiko").setLevel(max(lvl, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if cfg.log_json
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger(name)

