from __future__ import annotations

import logging

from kubernetes import client, config
from kubernetes.client import AppsV1Api, CoreV1Api
from kubernetes.config.config_exception import ConfigException

LOGGER = logging.getLogger(__name__)

IN_CLUSTER = "in-cluster"
KUBECONFIG = "kubeconfig"


def load_kube_configuration() -> str:
    """Load client configuration and return where it came from.

    The Pod's service account wins.  Outside a cluster the kubeconfig named by
    ``KUBECONFIG`` (or ``~/.kube/config``) is used.  A failure of both
    propagates and aborts startup.
    """
    try:
        config.load_incluster_config()
        source = IN_CLUSTER
    except ConfigException as exc:
        LOGGER.debug("No in-cluster service account (%s); trying kubeconfig", exc)
        config.load_kube_config()
        source = KUBECONFIG
    LOGGER.info("Kubernetes configuration loaded from %s", source)
    return source


def build_clients(api_client: client.ApiClient | None = None) -> tuple[CoreV1Api, AppsV1Api]:
    """Return the Pod and workload API groups over one shared ``ApiClient``."""
    shared = api_client if api_client is not None else client.ApiClient()
    core_api = client.CoreV1Api(shared)
    apps_api = client.AppsV1Api(shared)
    LOGGER.info(
        "Built CoreV1 (pods) and AppsV1 (deployments, statefulsets) clients for %s",
        shared.configuration.host,
    )
    return core_api, apps_api
