"""Observability - structured logging setup shared by the CLI and engines."""

from changewatch.observability.logging import bind_context, clear_context, setup_logging

__all__ = ["setup_logging", "bind_context", "clear_context"]
