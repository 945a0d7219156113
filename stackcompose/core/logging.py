"""
Structured logging configuration using structlog.

Every component of the composition engine logs through this module so that
topology runs produce one consistent stream of key/value events, whether the
output goes to a terminal during `cdk synth` or to a log aggregator in CI.

Usage:
    from stackcompose.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("stack_synthesized", stack="vpc", output_count=4)

Field naming:
    - stack: Name of the stack being synthesized
    - run_id: Identifier of one topology run
    - component: Network component a rule or boundary belongs to
    - duration_ms: Wall time of a synthesis step, in milliseconds
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor


def _stringify_run_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Ensure run_id is always rendered as a string."""
    if "run_id" in event_dict:
        event_dict["run_id"] = str(event_dict["run_id"])
    return event_dict


def _round_duration(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Round duration_ms to microsecond precision."""
    if "duration_ms" in event_dict:
        event_dict["duration_ms"] = round(float(event_dict["duration_ms"]), 3)
    return event_dict


def configure_logging(json_format: bool = True, log_level: str = "INFO") -> None:
    """
    Configure structlog for the application.

    Uses stdlib integration so CDK and third-party library logs share the same output.

    Args:
        json_format: If True, output JSON (CI). If False, pretty console output (development).
        log_level: Minimum log level to output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    # Processors that run before passing to stdlib
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _stringify_run_id,
        _round_duration,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # CDK prints synthesized output on stdout, keep logs on stderr
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        A bound structlog logger with context support.
    """
    return structlog.get_logger(name)


def bind_contextvars(**kwargs: Any) -> None:
    """
    Bind key-value pairs to the current context.

    These values are included in all subsequent log messages emitted from the
    current thread, e.g. the stack a worker is synthesizing.

    Usage:
        bind_contextvars(stack="pgdb", run_id=run_id)
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    """
    Clear all bound context variables.

    Worker threads are reused across stacks, so call this once a stack is done
    to prevent context leaking into the next one.
    """
    structlog.contextvars.clear_contextvars()
