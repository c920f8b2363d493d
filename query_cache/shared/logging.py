"""
Shared logging configuration for the query cache.
"""

import sys
import structlog
import logging
from typing import Any, Dict, Optional
from contextvars import ContextVar, Token

from opentelemetry import trace

from .config import get_settings

# Context variables for correlation
query_hash_var: ContextVar[Optional[str]] = ContextVar('query_hash', default=None)
cache_name_var: ContextVar[Optional[str]] = ContextVar('cache_name', default=None)


def configure_logging(log_level: Optional[str] = None) -> None:
    """Configure structured logging for applications embedding the cache.

    The level defaults to ``QUERY_CACHE_LOG_LEVEL`` from the settings.
    """
    if log_level is None:
        log_level = get_settings().log_level

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_trace_context,
            add_query_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add trace context to log events."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        if span_context.span_id != 0:
            event_dict["span_id"] = f"{span_context.span_id:016x}"

    return event_dict


def add_query_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the active cache and query to log events."""
    query_hash = query_hash_var.get()
    if query_hash and "query_hash" not in event_dict:
        event_dict["query_hash"] = query_hash

    cache_name = cache_name_var.get()
    if cache_name and "cache" not in event_dict:
        event_dict["cache"] = cache_name

    return event_dict


def bind_query_context(query_hash: Optional[str], cache_name: Optional[str] = None) -> Dict[str, Token]:
    """Set query context for the current task; returns tokens for reset."""
    tokens = {"query_hash": query_hash_var.set(query_hash)}
    if cache_name is not None:
        tokens["cache_name"] = cache_name_var.set(cache_name)
    return tokens


def reset_query_context(tokens: Dict[str, Token]) -> None:
    """Restore context variables bound by bind_query_context."""
    if "query_hash" in tokens:
        query_hash_var.reset(tokens["query_hash"])
    if "cache_name" in tokens:
        cache_name_var.reset(tokens["cache_name"])


def clear_context():
    """Clear all context variables."""
    query_hash_var.set(None)
    cache_name_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
