"""
Logging setup
=============

structlog configuration shared by the API process and tests. Every event
passes through ``RedactSecrets`` before rendering, so a log line can never
carry a secret the vault knows about or one shaped like a credential.
"""

import logging
import sys
from typing import Any, Callable, Iterable

import structlog

from claude_hub.core.sanitize import redact


class RedactSecrets:
    """structlog processor running every string in the event through ``redact``."""

    def __init__(self, secrets_provider: Callable[[], Iterable[str]]):
        self._secrets_provider = secrets_provider
        self._resolving = False

    def _known(self) -> tuple:
        # The provider may itself log while loading; those events get pattern-only redaction
        if self._resolving:
            return ()
        self._resolving = True
        try:
            return tuple(self._secrets_provider())
        finally:
            self._resolving = False

    def __call__(self, logger: Any, method_name: str, event_dict: dict) -> dict:
        known = self._known()
        return {key: self._scrub(value, known) for key, value in event_dict.items()}

    def _scrub(self, value: Any, known: tuple) -> Any:
        if isinstance(value, str):
            return redact(value, known)
        if isinstance(value, dict):
            return {k: self._scrub(v, known) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self._scrub(v, known) for v in value)
        return value


def configure_logging(
    secrets_provider: Callable[[], Iterable[str]],
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level.upper())

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
            RedactSecrets(secrets_provider),
            structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
