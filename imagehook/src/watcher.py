from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException, AppsV1Api, CoreV1Api

from imagehook.src.annotations import config_for, is_opted_in
from imagehook.src.config import DEFAULT_BASE_URL, DEFAULT_URL_PATH
from imagehook.src.dedup import DedupCache
from imagehook.src.images import extract_tag, has_changed, identity_key
from imagehook.src.metrics import METRICS
from imagehook.src.readiness import ReadinessGate
from imagehook.src.resources import ResourceKind
from imagehook.src.webhook import (
    DispatchResult,
    WebhookDispatcher,
    build_payload,
    build_webhook_url,
)


@dataclass(frozen=True)
class TriggerResult:
    """Record of one pipeline trigger attempt made for a watch event."""

    kind: str
    namespace: str
    name: str
    image: str
    image_tag: str
    dispatch: DispatchResult


class ResourceWatcher:
    """Watches one resource kind across all namespaces and triggers pipelines on image changes.

    Events are handled strictly one at a time.  For each ``MODIFIED`` event on
    an opted-in resource the watcher:

    1. waits for the Pod to become Ready (Pods only; a timeout drops the event
       without touching the dedup cache),
    2. compares the primary container image with the previously observed one,
    3. claims the image identity in the shared :class:`DedupCache`,
    4. posts the pipeline trigger once, without retry.

    Key internal state:
        ``_last_seen_images``
            Maps ``(namespace, name)`` to the last primary image this watcher
            observed for an opted-in resource.  It is the preferred
            "previous image" source; resource status is only a fallback.
            Owned by the watcher thread, never shared.
    """

    def __init__(
        self,
        kind: ResourceKind,
        core_api: CoreV1Api,
        apps_api: AppsV1Api,
        dedup_cache: DedupCache,
        dispatcher: WebhookDispatcher,
        readiness_gate: ReadinessGate | None = None,
        auth_token: str = "",
        base_url: str = DEFAULT_BASE_URL,
        url_path: str = DEFAULT_URL_PATH,
        watch_timeout_seconds: int = 30,
        logger: logging.Logger | None = None,
    ) -> None:
        if kind.requires_readiness and readiness_gate is None:
            raise ValueError(f"{kind.name} watcher requires a readiness gate")
        self.kind = kind
        self.core_api = core_api
        self.apps_api = apps_api
        self.dedup_cache = dedup_cache
        self.dispatcher = dispatcher
        self.readiness_gate = readiness_gate
        self.auth_token = auth_token
        self.base_url = base_url
        self.url_path = url_path
        self.watch_timeout_seconds = watch_timeout_seconds
        self.logger = logger or logging.getLogger(f"{__name__}.{kind.name}")

        self._last_seen_images: dict[tuple[str, str], str] = {}
        self.ready = threading.Event()
        self.fatal = False
        self._stop = threading.Event()
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()

    def request_stop(self) -> None:
        """Request a cooperative stop and immediately interrupt any open watch stream."""
        self._stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    def _previous_image(self, key: tuple[str, str], resource: Any) -> str | None:
        remembered = self._last_seen_images.get(key)
        if remembered is not None:
            return remembered
        return self.kind.status_image(resource)

    def handle_event(self, event_type: str, resource: Any) -> TriggerResult | None:
        """Process a single watch event.

        Returns a :class:`TriggerResult` when a webhook was dispatched (whether
        or not the POST succeeded), or ``None`` when the event was filtered,
        deduplicated, or the Pod never became Ready.
        """
        METRICS.events_total.labels(kind=self.kind.name, type=event_type or "UNKNOWN").inc()

        if not isinstance(resource, self.kind.model):
            self.logger.debug(
                "Ignoring %s event carrying %s instead of a %s",
                event_type,
                type(resource).__name__,
                self.kind.name,
            )
            return None

        namespace = resource.metadata.namespace
        name = resource.metadata.name
        key = (namespace, name)

        if event_type == "DELETED":
            self._last_seen_images.pop(key, None)
            self.logger.debug("%s %s/%s deleted", self.kind.name, namespace, name)
            return None

        if not is_opted_in(resource):
            return None

        new_image = self.kind.primary_image(resource)
        if new_image is None:
            self.logger.warning(
                "%s %s/%s has no container image; skipping", self.kind.name, namespace, name
            )
            return None

        if event_type != "MODIFIED":
            # A replayed ADDED after a re-list must not hide a rollout that
            # happened while the watch was down.
            remembered = self._last_seen_images.setdefault(key, new_image)
            self.logger.debug(
                "Remembering image %s for %s %s/%s on %s event",
                remembered,
                self.kind.name,
                namespace,
                name,
                event_type or "unknown",
            )
            return None

        if self.kind.requires_readiness and self.readiness_gate is not None:
            if not self.readiness_gate.wait_until_healthy(namespace, name, stop_event=self._stop):
                METRICS.readiness_timeouts_total.inc()
                self.logger.info(
                    "%s %s/%s is not ready; ignoring image %s",
                    self.kind.name,
                    namespace,
                    name,
                    new_image,
                )
                return None

        old_image = self._previous_image(key, resource)
        self._last_seen_images[key] = new_image

        if old_image is None:
            self.logger.error(
                "No previous image information available for %s %s/%s",
                self.kind.name,
                namespace,
                name,
            )
            return None

        self.logger.debug(
            "Comparing image %s (new) with %s (old) for %s %s/%s",
            new_image,
            old_image,
            self.kind.name,
            namespace,
            name,
        )
        if not has_changed(new_image, old_image):
            return None

        if not self.dedup_cache.check_and_mark(identity_key(new_image)):
            METRICS.dedup_hits_total.labels(kind=self.kind.name).inc()
            self.logger.info(
                "Image %s already triggered a pipeline; ignoring %s %s/%s",
                new_image,
                self.kind.name,
                namespace,
                name,
            )
            return None
        METRICS.dedup_cache_size.set(len(self.dedup_cache))

        return self._trigger(namespace=namespace, name=name, image=new_image, resource=resource)

    def _trigger(self, namespace: str, name: str, image: str, resource: Any) -> TriggerResult:
        config = config_for(resource)
        if config.defaulted:
            self.logger.debug(
                "Using default values for %s on %s %s/%s",
                ", ".join(sorted(config.defaulted)),
                self.kind.name,
                namespace,
                name,
            )
        image_tag = extract_tag(image)
        url = build_webhook_url(self.base_url, self.url_path, config.project_id)
        payload = build_payload(config, token=self.auth_token, image_tag=image_tag)

        self.logger.info(
            "%s %s/%s updated to image %s; triggering pipeline for env %s on ref %s",
            self.kind.name,
            namespace,
            name,
            image,
            config.env,
            config.branch,
        )
        result = self.dispatcher.dispatch(url, payload)
        if result.ok:
            METRICS.triggers_total.labels(kind=self.kind.name).inc()
        else:
            METRICS.trigger_errors_total.labels(kind=self.kind.name).inc()
            self.logger.error(
                "Pipeline trigger for %s %s/%s (image %s) failed and will not be retried: %s",
                self.kind.name,
                namespace,
                name,
                image,
                result.error,
            )

        return TriggerResult(
            kind=self.kind.name,
            namespace=namespace,
            name=name,
            image=image,
            image_tag=image_tag,
            dispatch=result,
        )

    def _backoff(self, stop: threading.Event, backoff_seconds: int) -> int:
        jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
        stop.wait(timeout=jittered)
        return min(backoff_seconds * 2, 30)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Watch loop: stream events for this kind until shutdown.

        1. Opens a watch over all namespaces, resuming from the last seen
           ``resourceVersion``, and reopens it whenever the server closes
           the stream (every ``watch_timeout_seconds``).
        2. On ``410 Gone`` forgets the resource version and watches afresh;
           the replayed ``ADDED`` events only refresh image history.
        3. On transient errors applies exponential backoff with jitter
           (capped at 30 s).
        4. ``401`` / ``403`` are configuration errors (RBAC/auth): the loop
           sets ``fatal`` and returns so the process can exit.

        An exception raised while handling one event is logged and the
        stream continues with the next event.
        """
        if shutdown_event is not None:
            self._stop = shutdown_event
        stop = self._stop
        list_function = self.kind.list_function(self.core_api, self.apps_api)

        resource_version: str | None = None
        backoff_seconds = 1
        watch_stream_count = 0
        self.logger.info("Watching for %s events", self.kind.name)

        while not stop.is_set():
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                if watch_stream_count > 0:
                    METRICS.watch_reconnects_total.labels(kind=self.kind.name).inc()
                watch_stream_count += 1
                stream = watcher.stream(
                    list_function,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                )
                self.ready.set()

                for event in stream:
                    if stop.is_set():
                        break

                    obj = event.get("object")
                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and getattr(metadata, "resource_version", None):
                        resource_version = metadata.resource_version

                    event_type = str(event.get("type", ""))
                    try:
                        self.handle_event(event_type=event_type, resource=obj)
                    except Exception:
                        self.logger.exception(
                            "Unexpected error handling %s %s event", self.kind.name, event_type
                        )

                backoff_seconds = 1
            except ApiException as exc:
                if exc.status == 410:
                    self.logger.warning(
                        "Watch resource version for %s expired, restarting watch", self.kind.name
                    )
                    resource_version = None
                    continue

                METRICS.watch_errors_total.labels(kind=self.kind.name).inc()
                if exc.status in {401, 403}:
                    self.logger.error(
                        "Kubernetes API watch for %s denied (status=%s). "
                        "Check controller RBAC and service account permissions.",
                        self.kind.name,
                        exc.status,
                    )
                    self.fatal = True
                    self.ready.clear()
                    return

                self.logger.exception("Kubernetes API watch error for %s", self.kind.name)
                backoff_seconds = self._backoff(stop, backoff_seconds)
            except Exception:
                self.logger.exception("Unexpected watch error for %s", self.kind.name)
                METRICS.watch_errors_total.labels(kind=self.kind.name).inc()
                backoff_seconds = self._backoff(stop, backoff_seconds)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None

        self.ready.clear()
