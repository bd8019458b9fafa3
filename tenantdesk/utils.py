"""
Shared helpers: logging setup and id generation.
"""
import logging
import sys

import ulid

from tenantdesk.core import config


_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger("tenantdesk")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the ``tenantdesk`` hierarchy.

    Usage:
        log = get_logger(__name__)
        log.info("Switching organization %s", org_id)
    """
    _configure_root()
    if name != "tenantdesk" and not name.startswith("tenantdesk."):
        name = f"tenantdesk.{name}"
    return logging.getLogger(name)


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.ulid()
