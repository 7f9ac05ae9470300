"""Object key helpers and namespace ownership checks."""

from __future__ import annotations

from typing import Any

from ..constants import DEVOPS_PROJECT_KIND, LABEL_DEVOPS_PROJECT
from ..errors import InvalidKeyError


class DeletedFinalStateUnknown:
    """Tombstone delivered on delete when the final object state was missed."""

    def __init__(self, key: str, obj: dict[str, Any] | None = None) -> None:
        self.key = key
        self.obj = obj


def meta_namespace_key(obj: Any) -> str:
    """Return ``namespace/name`` (or ``name`` when cluster scoped) for an object."""
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    if isinstance(obj, str):
        return obj
    if not isinstance(obj, dict):
        raise InvalidKeyError(f"object has no metadata: {obj!r}")

    metadata = obj.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise InvalidKeyError(f"object has no name: {metadata!r}")
    namespace = metadata.get("namespace")
    if namespace:
        return f"{namespace}/{name}"
    return name


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split a key into ``(namespace, name)``; namespace is empty when cluster scoped."""
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[0] and parts[1]:
        return parts[0], parts[1]
    raise InvalidKeyError(f"unexpected key format: {key!r}")


def is_controlled_by(owner_references: list[dict[str, Any]] | None, kind: str, name: str = "") -> bool:
    """Return True if a controller owner reference of ``kind`` (and ``name`` if set) exists."""
    for ref in owner_references or []:
        if not ref.get("controller"):
            continue
        if ref.get("kind") == kind and (not name or ref.get("name") == name):
            return True
    return False


def is_devops_project_namespace(namespace: dict[str, Any]) -> bool:
    """Namespaces are eligible only when owned by a DevOps project."""
    metadata = namespace.get("metadata") or {}
    labels = metadata.get("labels") or {}
    return LABEL_DEVOPS_PROJECT in labels and is_controlled_by(
        metadata.get("ownerReferences"), DEVOPS_PROJECT_KIND
    )
