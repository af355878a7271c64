from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes.client import AppsV1Api, CoreV1Api, V1Deployment, V1Pod, V1StatefulSet


def _pod_containers(pod: Any) -> list[Any]:
    return getattr(getattr(pod, "spec", None), "containers", None) or []


def _template_containers(workload: Any) -> list[Any]:
    template = getattr(getattr(workload, "spec", None), "template", None)
    return getattr(getattr(template, "spec", None), "containers", None) or []


def _first_image(containers: list[Any]) -> str | None:
    if not containers:
        return None
    return containers[0].image or None


def _pod_primary_image(pod: Any) -> str | None:
    return _first_image(_pod_containers(pod))


def _workload_primary_image(workload: Any) -> str | None:
    return _first_image(_template_containers(workload))


def _pod_status_image(pod: Any) -> str | None:
    """Image the kubelet reports for the primary container, else the first status."""
    statuses = getattr(getattr(pod, "status", None), "container_statuses", None) or []
    if not statuses:
        return None
    containers = _pod_containers(pod)
    primary_name = containers[0].name if containers else None
    for status in statuses:
        if status.name == primary_name:
            return status.image or None
    return statuses[0].image or None


def _condition_message_image(workload: Any) -> str | None:
    """Free-text message of the first status condition.

    Kubernetes does not record the previous image on Deployments or
    StatefulSets; this is only a fallback when no history exists.
    """
    conditions = getattr(getattr(workload, "status", None), "conditions", None) or []
    if not conditions:
        return None
    return conditions[0].message or None


@dataclass(frozen=True)
class ResourceKind:
    """Capabilities a watcher needs for one resource kind.

    ``list_function`` picks the all-namespaces list call that
    ``kubernetes.watch.Watch.stream`` wraps.
    """

    name: str
    model: type
    list_function: Callable[[CoreV1Api, AppsV1Api], Callable[..., Any]]
    primary_image: Callable[[Any], str | None]
    status_image: Callable[[Any], str | None]
    requires_readiness: bool = False


POD = ResourceKind(
    name="pod",
    model=V1Pod,
    list_function=lambda core_api, apps_api: core_api.list_pod_for_all_namespaces,
    primary_image=_pod_primary_image,
    status_image=_pod_status_image,
    requires_readiness=True,
)

DEPLOYMENT = ResourceKind(
    name="deployment",
    model=V1Deployment,
    list_function=lambda core_api, apps_api: apps_api.list_deployment_for_all_namespaces,
    primary_image=_workload_primary_image,
    status_image=_condition_message_image,
)

STATEFULSET = ResourceKind(
    name="statefulset",
    model=V1StatefulSet,
    list_function=lambda core_api, apps_api: apps_api.list_stateful_set_for_all_namespaces,
    primary_image=_workload_primary_image,
    status_image=_condition_message_image,
)

ALL_KINDS: tuple[ResourceKind, ...] = (POD, DEPLOYMENT, STATEFULSET)
