"""Logging helpers shared by the CLI, the reconciler and the pipeline."""

from eventsink.utils.logging import (
    JsonFormatter,
    RedactSecretsFilter,
    configure_logging,
    get_logger,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "JsonFormatter",
    "RedactSecretsFilter",
]
