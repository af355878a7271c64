from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from kubernetes.client import ApiException, CoreV1Api

LOGGER = logging.getLogger(__name__)


def is_pod_ready(pod: Any) -> bool:
    """Return True if the Pod reports condition ``Ready=True``."""
    status = getattr(pod, "status", None)
    for condition in getattr(status, "conditions", None) or []:
        if condition.type == "Ready" and condition.status == "True":
            return True
    return False


class ReadinessGate:
    """Polls a Pod until it is Ready or a deadline passes.

    ``clock`` and ``sleep`` are injectable so tests can drive the loop with a
    fake clock instead of waiting in real time.  Without an injected
    ``sleep`` the gate waits on the caller's stop event, so shutdown
    interrupts a pending poll immediately.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        poll_interval_seconds: float = 2.0,
        timeout_seconds: float = 70.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self.core_api = core_api
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.sleep = sleep

    def _pause(self, seconds: float, stop_event: threading.Event | None) -> bool:
        """Sleep for *seconds*; return True if *stop_event* was set meanwhile."""
        if self.sleep is None:
            if stop_event is not None:
                return stop_event.wait(timeout=seconds)
            time.sleep(seconds)
            return False
        self.sleep(seconds)
        return stop_event is not None and stop_event.is_set()

    def wait_until_healthy(
        self,
        namespace: str,
        name: str,
        timeout: float | None = None,
        stop_event: threading.Event | None = None,
    ) -> bool:
        """Block until Pod *namespace*/*name* is Ready.

        The first poll happens one interval after the call.  Read errors
        (including 404 while the Pod is being recreated) count as "not ready
        yet" and never end the wait early.  Returns False on timeout or when
        *stop_event* is set.
        """
        timeout_seconds = self.timeout_seconds if timeout is None else timeout
        deadline = self.clock() + timeout_seconds

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            if self._pause(min(self.poll_interval_seconds, remaining), stop_event):
                LOGGER.info("Stopped waiting for pod %s/%s to become ready", namespace, name)
                return False
            if self.clock() >= deadline:
                break

            try:
                pod = self.core_api.read_namespaced_pod(name=name, namespace=namespace)
            except ApiException as exc:
                LOGGER.error(
                    "Failed to read pod %s/%s while waiting for readiness (status=%s)",
                    namespace,
                    name,
                    exc.status,
                )
                continue
            except Exception:
                LOGGER.exception("Unexpected error reading pod %s/%s", namespace, name)
                continue

            if is_pod_ready(pod):
                return True
            LOGGER.debug("Waiting for pod %s/%s to be ready", namespace, name)

        LOGGER.info(
            "Pod %s/%s did not become ready within %.1fs", namespace, name, timeout_seconds
        )
        return False
