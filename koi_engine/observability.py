"""Logging and Logfire setup.

Modules log through ``logging.getLogger(__name__)``; ``configure_logging``
routes that to a rich console handler. Iteration and evaluation phases are
wrapped in Logfire spans via ``span``. Logfire stays local-only unless a
``LOGFIRE_TOKEN`` is configured, and is configured that way on first use if
``configure_logging`` was never called.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import logfire
from rich.console import Console
from rich.logging import RichHandler

from koi_engine.settings import LoggingSettings

logger = logging.getLogger(__name__)

_handler_installed = False
_logfire_configured = False


def configure_logging(
    settings: Optional[LoggingSettings] = None,
    console: Optional[Console] = None,
) -> None:
    """Install the rich log handler and configure Logfire. Safe to call twice."""
    global _handler_installed
    settings = settings or LoggingSettings()

    root = logging.getLogger("koi_engine")
    root.setLevel(settings.log_level)
    if not _handler_installed:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
        _handler_installed = True

    configure_logfire(settings)


def configure_logfire(settings: Optional[LoggingSettings] = None) -> None:
    """Export spans only when enabled with a token; otherwise keep them local."""
    global _logfire_configured
    settings = settings or LoggingSettings()

    token = settings.logfire_token.get_secret_value() if settings.logfire_token else None
    if settings.logfire_enabled and token:
        logfire.configure(
            service_name=settings.service_name,
            send_to_logfire="if-token-present",
            token=token,
            console=False,
        )
    else:
        logfire.configure(
            service_name=settings.service_name,
            send_to_logfire=False,
            console=False,
        )
    _logfire_configured = True


def _ensure_logfire() -> None:
    if not _logfire_configured:
        logger.debug("Logfire not configured yet; configuring it local-only")
        configure_logfire()


@contextmanager
def span(name: str, /, **attributes: Any) -> Iterator[None]:
    """Logfire span. Configures Logfire local-only on first use."""
    _ensure_logfire()
    with logfire.span(name, **attributes):
        yield


def log_decision(task_id: str, iteration: int, decision: str, score: Optional[float]) -> None:
    _ensure_logfire()
    logfire.info(
        "Iteration {iteration} of {task_id}: {decision}",
        task_id=task_id,
        iteration=iteration,
        decision=decision,
        score=score,
    )
