from __future__ import annotations

from dataclasses import dataclass
from typing import Any

TRIGGER_ANNOTATION = "image.update.trigger"
ENV_ANNOTATION = "config.app/env"
BRANCH_ANNOTATION = "config.app/branch"
PROJECT_ID_ANNOTATION = "config.app/project-id"

DEFAULT_ENV = "default"
DEFAULT_BRANCH = "default"
DEFAULT_PROJECT_ID = "123456"


@dataclass(frozen=True)
class TriggerConfig:
    """Per-resource pipeline settings resolved from annotations.

    ``defaulted`` lists the annotation keys that were absent and fell back to
    their default value.
    """

    env: str
    branch: str
    project_id: str
    defaulted: frozenset[str] = frozenset()


def resource_annotations(resource: Any) -> dict[str, str]:
    """Return ``metadata.annotations`` as a plain dict, tolerating missing metadata."""
    metadata = getattr(resource, "metadata", None)
    annotations = getattr(metadata, "annotations", None)
    if not isinstance(annotations, dict):
        return {}
    return annotations


def is_opted_in(resource: Any) -> bool:
    return resource_annotations(resource).get(TRIGGER_ANNOTATION) == "true"


def config_for(resource: Any) -> TriggerConfig:
    annotations = resource_annotations(resource)
    defaulted: set[str] = set()

    def lookup(key: str, default: str) -> str:
        if key in annotations:
            return annotations[key]
        defaulted.add(key)
        return default

    return TriggerConfig(
        env=lookup(ENV_ANNOTATION, DEFAULT_ENV),
        branch=lookup(BRANCH_ANNOTATION, DEFAULT_BRANCH),
        project_id=lookup(PROJECT_ID_ANNOTATION, DEFAULT_PROJECT_ID),
        defaulted=frozenset(defaulted),
    )
