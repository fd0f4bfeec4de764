"""Logging helpers for the CampGuard integration.

Every module obtains its logger through :func:`get_logger` so that the
integration-wide debug flag can raise verbosity for all of them at once.
"""

from __future__ import annotations

import logging

_PACKAGE_LOGGER = __name__.rpartition(".")[0]


def get_logger(name: str) -> logging.Logger:
    """Return the logger for *name* (normally the calling module's ``__name__``)."""
    return logging.getLogger(name)


def set_debug_logging(enabled: bool) -> None:
    """Switch the integration's loggers to DEBUG when the debug option is on.

    When the option is off the level is reset to ``NOTSET`` so the level
    configured through Home Assistant's ``logger`` integration applies again.
    """
    logging.getLogger(_PACKAGE_LOGGER).setLevel(
        logging.DEBUG if enabled else logging.NOTSET
    )
