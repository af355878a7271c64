from __future__ import annotations

import logging
import threading

from kubernetes.client import AppsV1Api, CoreV1Api

from imagehook.src.config import ControllerSettings
from imagehook.src.dedup import DedupCache
from imagehook.src.readiness import ReadinessGate
from imagehook.src.resources import DEPLOYMENT, POD, STATEFULSET, ResourceKind
from imagehook.src.watcher import ResourceWatcher
from imagehook.src.webhook import WebhookDispatcher

LOGGER = logging.getLogger(__name__)


class ImageTriggerController:
    """Runs one :class:`ResourceWatcher` thread per enabled resource kind.

    All watchers share a single :class:`DedupCache`.  ``ready`` is set while
    every watcher has an open stream.  ``failed`` becomes True when a watcher
    stops for a reason other than shutdown (RBAC denial, crash); the
    controller then stops the remaining watchers.
    """

    def __init__(
        self,
        watchers: list[ResourceWatcher],
        supervise_interval_seconds: float = 1.0,
        stop_join_timeout_seconds: float = 5.0,
    ) -> None:
        if not watchers:
            raise ValueError("at least one watcher is required")
        self.watchers = watchers
        self.supervise_interval_seconds = supervise_interval_seconds
        self.stop_join_timeout_seconds = stop_join_timeout_seconds
        self.ready = threading.Event()
        self.failed = False
        self._threads: list[threading.Thread] = []

    def _start_watchers(self, stop: threading.Event) -> None:
        for resource_watcher in self.watchers:
            thread = threading.Thread(
                target=resource_watcher.run_forever,
                kwargs={"shutdown_event": stop},
                name=f"watch-{resource_watcher.kind.name}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def _check_watchers(self, stop: threading.Event) -> None:
        for resource_watcher, thread in zip(self.watchers, self._threads, strict=True):
            if thread.is_alive() and not resource_watcher.fatal:
                continue
            if stop.is_set():
                return
            LOGGER.error(
                "%s watcher exited unexpectedly; shutting down", resource_watcher.kind.name
            )
            self.failed = True
            stop.set()
            return

        if all(resource_watcher.ready.is_set() for resource_watcher in self.watchers):
            self.ready.set()
        else:
            self.ready.clear()

    def watcher_states(self) -> dict[str, bool]:
        return {
            resource_watcher.kind.name: resource_watcher.ready.is_set()
            for resource_watcher in self.watchers
        }

    def request_stop(self) -> None:
        for resource_watcher in self.watchers:
            resource_watcher.request_stop()

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Start every watcher and supervise them until shutdown."""
        stop = shutdown_event or threading.Event()
        LOGGER.info(
            "Starting watchers for: %s",
            ", ".join(resource_watcher.kind.name for resource_watcher in self.watchers),
        )
        self._start_watchers(stop)

        while not stop.is_set():
            self._check_watchers(stop)
            stop.wait(timeout=self.supervise_interval_seconds)

        self.ready.clear()
        self.request_stop()
        for thread in self._threads:
            thread.join(timeout=self.stop_join_timeout_seconds)
            if thread.is_alive():
                LOGGER.warning("Watcher thread %s did not stop in time", thread.name)
        self._threads = []


def enabled_kinds(settings: ControllerSettings) -> list[ResourceKind]:
    kinds = []
    if settings.watch_pods:
        kinds.append(POD)
    if settings.watch_deployments:
        kinds.append(DEPLOYMENT)
    if settings.watch_statefulsets:
        kinds.append(STATEFULSET)
    return kinds


def build_controller(
    settings: ControllerSettings,
    core_api: CoreV1Api,
    apps_api: AppsV1Api,
    dedup_cache: DedupCache | None = None,
    dispatcher: WebhookDispatcher | None = None,
) -> ImageTriggerController:
    """Wire watchers for every enabled kind around one shared dedup cache."""
    cache = dedup_cache if dedup_cache is not None else DedupCache()
    webhook_dispatcher = dispatcher or WebhookDispatcher(
        timeout_seconds=settings.webhook_timeout_seconds
    )
    readiness_gate = ReadinessGate(
        core_api=core_api,
        poll_interval_seconds=settings.readiness_poll_interval_seconds,
        timeout_seconds=settings.readiness_timeout_seconds,
    )

    watchers = [
        ResourceWatcher(
            kind=kind,
            core_api=core_api,
            apps_api=apps_api,
            dedup_cache=cache,
            dispatcher=webhook_dispatcher,
            readiness_gate=readiness_gate if kind.requires_readiness else None,
            auth_token=settings.auth_token,
            base_url=settings.base_url,
            url_path=settings.url_path,
        )
        for kind in enabled_kinds(settings)
    ]
    return ImageTriggerController(watchers)

