from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://gitlab.com/api/v4"
DEFAULT_URL_PATH = "/projects/PROJECT_ID/trigger/pipeline"
PROJECT_ID_PLACEHOLDER = "PROJECT_ID"


class ConfigError(RuntimeError):
    """Raised when the controller configuration is invalid."""


@dataclass(frozen=True)
class ResolvedSetting:
    """A configuration value together with whether its default was used."""

    value: str
    defaulted: bool


@dataclass(frozen=True)
class ControllerSettings:
    """Immutable controller configuration loaded at startup.

    Attributes:
        auth_token: Pipeline trigger token forwarded verbatim in every payload.
        base_url: CI API base URL (``URL``).
        url_path: Trigger path template containing ``PROJECT_ID`` (``URL_PATH``).
        watch_pods / watch_deployments / watch_statefulsets: Which resource
            kinds get a watcher.
    """

    auth_token: str
    base_url: str
    url_path: str
    watch_pods: bool
    watch_deployments: bool
    watch_statefulsets: bool
    readiness_timeout_seconds: float = 70.0
    readiness_poll_interval_seconds: float = 2.0
    webhook_timeout_seconds: float = 10.0
    health_port: int = 8080


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def resolve_env(
    name: str, default: str, env: Mapping[str, str] | None = None
) -> ResolvedSetting:
    """Look up *name* in the environment, treating empty values as unset."""
    values = env if env is not None else os.environ
    raw = values.get(name)
    if not raw:
        return ResolvedSetting(value=default, defaulted=True)
    return ResolvedSetting(value=raw, defaulted=False)


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if not raw:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def env_float(
    name: str,
    default: float,
    *,
    minimum: float | None = None,
    env: Mapping[str, str] | None = None,
) -> float:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if not raw:
        value = default
    else:
        try:
            value = float(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be a number") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    return value


def load_settings(env: Mapping[str, str] | None = None) -> ControllerSettings:
    """Load controller settings from the environment.

    Environment variables (with defaults):
        ``AUTH_TOKEN``          — trigger token (empty; a warning is logged).
        ``URL``                 — CI API base URL (``https://gitlab.com/api/v4``).
        ``URL_PATH``            — trigger path (``/projects/PROJECT_ID/trigger/pipeline``).
        ``WATCH_PODS``          — watch Pods (``false``).
        ``WATCH_DEPLOYMENTS``   — watch Deployments (``true``).
        ``WATCH_STATEFULSETS``  — watch StatefulSets (``false``).
        ``READINESS_TIMEOUT_SECONDS`` / ``READINESS_POLL_INTERVAL_SECONDS``
                                — Pod readiness gate (``70`` / ``2``).
        ``WEBHOOK_TIMEOUT_SECONDS`` — HTTP timeout for the trigger call (``10``).
        ``HEALTH_PORT``         — health/metrics server port (``8080``).

    Raises :class:`ConfigError` when a value is malformed or when no resource
    kind is enabled.
    """
    values = env if env is not None else os.environ

    token = resolve_env("AUTH_TOKEN", "", values)
    if token.defaulted:
        LOGGER.warning("AUTH_TOKEN is not set; webhook payloads will carry an empty token")

    base_url = resolve_env("URL", DEFAULT_BASE_URL, values)
    url_path = resolve_env("URL_PATH", DEFAULT_URL_PATH, values)
    if PROJECT_ID_PLACEHOLDER not in url_path.value:
        LOGGER.warning(
            "URL_PATH %r has no %s placeholder; every trigger will use the same URL",
            url_path.value,
            PROJECT_ID_PLACEHOLDER,
        )

    settings = ControllerSettings(
        auth_token=token.value,
        base_url=base_url.value,
        url_path=url_path.value,
        watch_pods=parse_bool(values.get("WATCH_PODS"), default=False),
        watch_deployments=parse_bool(values.get("WATCH_DEPLOYMENTS"), default=True),
        watch_statefulsets=parse_bool(values.get("WATCH_STATEFULSETS"), default=False),
        readiness_timeout_seconds=env_float(
            "READINESS_TIMEOUT_SECONDS", 70.0, minimum=0.0, env=values
        ),
        readiness_poll_interval_seconds=env_float(
            "READINESS_POLL_INTERVAL_SECONDS", 2.0, minimum=0.1, env=values
        ),
        webhook_timeout_seconds=env_float("WEBHOOK_TIMEOUT_SECONDS", 10.0, minimum=0.1, env=values),
        health_port=env_int("HEALTH_PORT", 8080, minimum=0, maximum=65535, env=values),
    )

    if not (settings.watch_pods or settings.watch_deployments or settings.watch_statefulsets):
        raise ConfigError(
            "No resource kind enabled. Set at least one of WATCH_PODS, "
            "WATCH_DEPLOYMENTS or WATCH_STATEFULSETS to true."
        )
    return settings
