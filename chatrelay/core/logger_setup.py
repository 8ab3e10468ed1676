"""
core/logger_setup.py - Reusable logging configuration for the chat relay.

``setup_logging()`` is called once by the launcher (and by the test harness).
Per-request fields such as ``request_id`` and ``client_ip`` are carried in
context variables and stamped onto every record by ``_ContextFilter``.
"""

from __future__ import annotations

import collections
import contextvars
import copy
import logging
import logging.config
import os
import platform
import socket
import warnings
from typing import Any

# ----------  contextual metadata  ----------
_ctx_service: contextvars.ContextVar[str] = contextvars.ContextVar("service", default="chatrelay")
_ctx_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
_ctx_client_ip: contextvars.ContextVar[str] = contextvars.ContextVar("client_ip", default="-")

# Deployment/infrastructure context (set once at startup)
_ctx_hostname: contextvars.ContextVar[str] = contextvars.ContextVar("hostname", default="unknown")
_ctx_deployment_env: contextvars.ContextVar[str] = contextvars.ContextVar(
    "deployment_env", default="local"
)


def bind_log_context(
    *, service: str | None = None, request_id: str | None = None, client_ip: str | None = None
) -> None:
    """Bind service, request_id, and client_ip to the logging context."""
    if service is not None:
        _ctx_service.set(service)
    if request_id is not None:
        _ctx_request_id.set(request_id)
    if client_ip is not None:
        _ctx_client_ip.set(client_ip)


def bind_deployment_context(
    *, hostname: str | None = None, deployment_env: str | None = None
) -> None:
    """Bind deployment metadata to the logging context.

    Called once at service startup. Missing values are auto-detected.
    """
    if hostname is None:
        try:
            hostname = socket.getfqdn() or platform.node()
        except OSError:
            hostname = "unknown"
    _ctx_hostname.set(hostname)
    _ctx_deployment_env.set(deployment_env or os.getenv("DEPLOYMENT_ENV", "local"))


# ----------  context filter  ----------
class _ContextFilter(logging.Filter):
    """Adds service/request_id/client_ip and deployment fields to every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = _ctx_service.get()
        record.request_id = _ctx_request_id.get()
        record.client_ip = _ctx_client_ip.get()
        record.hostname = _ctx_hostname.get()
        record.deployment_env = _ctx_deployment_env.get()
        return True


# Suppress duplicate exception log entries in quick succession (same message & traceback)
class _DuplicateFilter(logging.Filter):
    """Filter that drops consecutive duplicate (msg, exc_text) records."""

    def __init__(self, window: int = 20) -> None:
        super().__init__()
        self._recent: collections.deque[tuple[str, str]] = collections.deque(maxlen=window)

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        key = (record.getMessage(), getattr(record, "exc_text", "") or "")
        if key in self._recent:
            return False
        self._recent.append(key)
        return True


def merge_dicts(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge *overrides* into *base*.

    * For nested dicts, values are merged depth-first.
    * If the types at the same key differ, the override value wins and a
      `warnings.warn()` is emitted.

    Returns the modified *base* so callers can write
    `cfg = merge_dicts(cfg, overrides)`.
    """
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            merge_dicts(base[key], value)
        else:
            if key in base and not isinstance(base[key], type(value)):
                warnings.warn(
                    f"Type mismatch for key '{key}': "
                    f"{type(base[key]).__name__} vs {type(value).__name__}. "
                    "Using override value."
                )
            base[key] = value
    return base


DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        # Human-friendly for dev runs (`LOG_FORMAT=pretty`)
        "rich": {"datefmt": "%Y-%m-%d %H:%M:%S"},
        # Machine-friendly (`LOG_FORMAT=json`, default)
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(service)s %(request_id)s %(client_ip)s %(hostname)s %(deployment_env)s %(name)s %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S%z",
        },
        "default": {"format": "%(asctime)s [%(levelname)s] %(message)s"},
    },
    "filters": {
        "dedupe": {"()": "chatrelay.core.logger_setup._DuplicateFilter"},
        "context": {"()": "chatrelay.core.logger_setup._ContextFilter"},
    },
    "handlers": {
        "stdout": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["dedupe", "context"],
            "stream": "ext://sys.stdout",
        },
        "rich": {
            "class": "rich.logging.RichHandler",
            "formatter": "rich",
            "filters": ["dedupe", "context"],
            "markup": False,
            "show_path": False,
            "rich_tracebacks": True,
        },
    },
    "loggers": {
        # aiohttp logs every request at INFO; keep it for debugging only
        "aiohttp.access": {"level": "WARNING"},
    },
    "root": {"handlers": ["stdout"], "level": "INFO"},
}


_CONFIGURED: bool = False


def setup_logging(config_overrides: dict[str, Any] | None = None) -> None:
    """
    Configure logging from ``DEFAULT_LOGGING_CONFIG``.

    Args:
        config_overrides (dict, optional): dictConfig fragments merged over the
            defaults, e.g. ``{"root": {"level": "WARNING"}}`` in tests.

    Environment:
        LOG_LEVEL, LOG_FORMAT (json|pretty), LOG_TO_FILE, LOG_FILE_PATH.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return  # already configured – avoid duplicate handlers

    config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)

    env_level = os.getenv("LOG_LEVEL")
    if env_level:
        config.setdefault("root", {})["level"] = env_level.upper()
    config["force"] = True
    if config_overrides:
        merge_dicts(config, config_overrides)

    log_format = os.getenv("LOG_FORMAT", "json").lower()
    if log_format == "pretty":
        config["root"]["handlers"] = ["rich"]
    if os.getenv("LOG_TO_FILE"):
        log_file = os.getenv("LOG_FILE_PATH", "logs/chatrelay.log")
        log_dir = os.path.dirname(log_file)

        add_file_handler = True
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                warnings.warn(f"Cannot create log directory {log_dir}: {e}. File logging disabled.")
                add_file_handler = False

        if add_file_handler:
            config["handlers"]["file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": log_file,
                "maxBytes": 20_000_000,
                "backupCount": 3,
                "formatter": "json",
                # dedupe is a single shared instance; stdout already applies it
                "filters": ["context"],
            }
            config["root"]["handlers"].append("file")

    if not config.get("handlers") or not config.get("root", {}).get("handlers"):
        warnings.warn("Logging configuration missing handlers; using fallback console handler.")
        config["handlers"] = {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        }
        config.setdefault("root", {})["handlers"] = ["console"]

    logging.config.dictConfig(config)
    _CONFIGURED = True


__all__ = ["setup_logging", "bind_log_context", "bind_deployment_context", "merge_dicts"]
