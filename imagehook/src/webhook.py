from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import requests

from imagehook.src.annotations import TriggerConfig
from imagehook.src.config import PROJECT_ID_PLACEHOLDER

LOGGER = logging.getLogger(__name__)

TRIGGERED_ENV_KEY = "variables[TRIGGERED_ENV]"
IMAGE_TAG_KEY = "variables[IMAGE_TAG]"


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a single webhook POST.

    ``status_code`` is None when no response was received; ``error`` then
    holds the failure description.  Any HTTP status counts as delivered.
    """

    url: str
    status_code: int | None = None
    body: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_webhook_url(base_url: str, path_template: str, project_id: str) -> str:
    return f"{base_url}{path_template}".replace(PROJECT_ID_PLACEHOLDER, project_id)


def build_payload(config: TriggerConfig, token: str, image_tag: str) -> dict[str, str]:
    return {
        "ref": config.branch,
        "token": token,
        TRIGGERED_ENV_KEY: config.env,
        IMAGE_TAG_KEY: image_tag,
    }


def _loggable_payload(payload: dict[str, str]) -> dict[str, str]:
    return {k: ("[REDACTED]" if k == "token" else v) for k, v in payload.items()}


class WebhookDispatcher:
    """Sends pipeline trigger payloads as a single JSON POST each, without retries."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    def dispatch(self, url: str, payload: dict[str, str]) -> DispatchResult:
        """POST *payload* to *url*.

        Errors are logged and returned in the result instead of being raised;
        the caller treats the trigger as handled either way.
        """
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            LOGGER.exception("Failed to serialize webhook payload for %s", url)
            return DispatchResult(url=url, error=f"serialization failed: {exc}")

        try:
            response = self.session.post(
                url,
                data=body,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
            response_text = response.text
        except requests.RequestException as exc:
            LOGGER.exception(
                "Failed to trigger webhook %s with payload %s",
                url,
                _loggable_payload(payload),
            )
            return DispatchResult(url=url, error=str(exc))

        LOGGER.info("Webhook %s responded with status %d", url, response.status_code)
        LOGGER.debug(
            "Webhook payload %s, response body: %s", _loggable_payload(payload), response_text
        )
        return DispatchResult(url=url, status_code=response.status_code, body=response_text)
