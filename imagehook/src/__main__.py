from __future__ import annotations

import json
import logging
import os
import re
import signal
import sys
import threading

from imagehook.src.config import load_settings
from imagehook.src.controller import build_controller
from imagehook.src.health import start_health_server
from imagehook.src.kube import build_clients, load_kube_configuration
from imagehook.src.metrics import METRICS

RUNTIME_VERSION = "0.1.0"
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|secret|private[_-]?token)\b['\"]?\s*[:=]\s*['\"]?)([^\s,;'\"}]+)"
        ),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|private_token|access_token)=)([^&\s]+)"),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging() -> None:
    """Configure structured JSON logging; ``LOG_LEVEL`` accepts debug, info or error."""
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.root.handlers.clear()
    logging.root.addHandler(handler)
    level = logging.getLevelName(log_level)
    logging.root.setLevel(level if isinstance(level, int) else logging.INFO)
    # urllib3 logs full request lines at debug, which would include trigger URLs.
    logging.getLogger("urllib3").setLevel(max(logging.root.level, logging.INFO))


def main() -> int:
    """Controller entrypoint: configure logging, start the health server, and run the watchers."""
    configure_logging()
    logger = logging.getLogger(__name__)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    settings = load_settings()
    load_kube_configuration()
    core_api, apps_api = build_clients()
    controller = build_controller(settings, core_api=core_api, apps_api=apps_api)

    health_server = start_health_server(
        ready=controller.ready,
        port=settings.health_port,
        watcher_states=controller.watcher_states,
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        controller.run_forever(shutdown_event=shutdown_event)
    finally:
        health_server.shutdown()

    if controller.failed:
        logger.error("Controller stopped after a fatal watcher failure")
        return 1
    logger.info("Controller stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
