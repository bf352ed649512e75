"""File-backed tracking store for resources created by the harness.

Persists a TrackingManifest as JSON under ``<tracking_dir>/tracking-<run_id>.json``
so a later invocation with the same run id can reuse the resource group,
baseline vault and scenario vaults instead of recreating them, and so
teardown knows what to delete.

The store is single-writer: only the running harness process touches the
manifest, and every mutation rewrites the whole file.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from vault_policy_harness.core.models import ResourceKind, TrackedResource, TrackingManifest
from vault_policy_harness.observability import get_logger

logger = get_logger(__name__)

_MANIFEST_PREFIX = "tracking-"


def manifest_path(tracking_dir: Path, run_id: str) -> Path:
    """Return the manifest path for a run."""
    return tracking_dir / f"{_MANIFEST_PREFIX}{run_id}.json"


def latest_run_id(tracking_dir: Path) -> str | None:
    """Return the run id of the most recently written manifest, if any.

    Args:
        tracking_dir: Directory holding manifests.

    Returns:
        The run id, or None when no manifest exists.
    """
    if not tracking_dir.is_dir():
        return None
    manifests = sorted(
        tracking_dir.glob(f"{_MANIFEST_PREFIX}*.json"),
        key=lambda path: path.stat().st_mtime,
    )
    if not manifests:
        return None
    return manifests[-1].stem[len(_MANIFEST_PREFIX):]


class TrackingStore:
    """Manifest of tracked resources for one run.

    Args:
        tracking_dir: Directory holding manifests.
        run_id: Run identifier the manifest is keyed by.
        subscription: Target subscription id.
        resource_group: Resource group hosting the run's resources.
    """

    def __init__(
        self,
        tracking_dir: Path,
        run_id: str,
        subscription: str,
        resource_group: str,
    ) -> None:
        """Initialize the store, loading an existing manifest when present.

        Args:
            tracking_dir: Directory holding manifests.
            run_id: Run identifier.
            subscription: Target subscription id.
            resource_group: Resource group name.
        """
        self._path = manifest_path(tracking_dir, run_id)
        self._manifest = self._load() or TrackingManifest(
            run_id=run_id,
            timestamp=datetime.now(UTC),
            subscription=subscription,
            resource_group=resource_group,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def run_id(self) -> str:
        return self._manifest.run_id

    @property
    def resource_group(self) -> str:
        return self._manifest.resource_group

    @property
    def resources(self) -> list[TrackedResource]:
        """Tracked resources in the order they were recorded."""
        return list(self._manifest.resources)

    def _load(self) -> TrackingManifest | None:
        if not self._path.exists():
            return None
        manifest = TrackingManifest.model_validate_json(self._path.read_text(encoding="utf-8"))
        logger.info(
            "Loaded tracking manifest",
            path=str(self._path),
            resource_count=len(manifest.resources),
        )
        return manifest

    def find(self, kind: ResourceKind, name: str) -> TrackedResource | None:
        """Return the tracked resource with this kind and name, if recorded."""
        return next(
            (r for r in self._manifest.resources if r.kind == kind and r.name == name),
            None,
        )

    def record(self, resource: TrackedResource) -> TrackedResource:
        """Append a resource and persist the manifest.

        Recording a kind/name pair that is already tracked replaces the
        earlier entry, so adopting a live resource never duplicates it.

        Args:
            resource: The resource to track.

        Returns:
            The recorded resource.
        """
        remaining = [
            r
            for r in self._manifest.resources
            if not (r.kind == resource.kind and r.name == resource.name)
        ]
        self._manifest = self._manifest.model_copy(
            update={"resources": [*remaining, resource], "timestamp": datetime.now(UTC)}
        )
        self.save()
        return resource

    def save(self) -> Path:
        """Write the manifest to disk.

        Returns:
            The manifest path.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            self._manifest.model_dump_json(by_alias=True, indent=2),
            encoding="utf-8",
        )
        return self._path

    def delete(self) -> None:
        """Remove the manifest file and forget all tracked resources."""
        if self._path.exists():
            self._path.unlink()
            logger.info("Deleted tracking manifest", path=str(self._path))
        self._manifest = self._manifest.model_copy(update={"resources": []})
