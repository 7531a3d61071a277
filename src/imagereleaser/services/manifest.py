"""Persisted image manifest consumed by deployment tooling."""

import os
import tempfile
from typing import Dict, Iterable

import yaml

from imagereleaser.constants import FILE_MODE, MANIFEST_DIR
from imagereleaser.errors import ManifestError
from imagereleaser.errors_catalog import actionable_error
from imagereleaser.models import RenamingRecord

Manifest = Dict[str, str]


class ManifestStore:
    """Loads, reconciles and atomically rewrites ``old_image -> new_image`` manifests.

    The file is a YAML document with an ``images`` list of
    ``{old_image, new_image}`` pairs. Entry order is kept between runs.
    """

    def __init__(self, logger, root_dir: str = MANIFEST_DIR):
        self.logger = logger
        self.root_dir = root_dir

    def path_for(self, namespace: str) -> str:
        return os.path.join(self.root_dir, f"{namespace}.yaml")

    def load(self, path: str) -> Manifest:
        if not os.path.exists(path):
            self.logger.info("No manifest at %s yet, starting from an empty one", path)
            return {}

        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                document = yaml.safe_load(file_obj)
        except (OSError, yaml.YAMLError) as exc:
            raise ManifestError(f"{actionable_error('manifest_unreadable', path=path)} ({exc})") from exc

        return self._from_document(document, path)

    @staticmethod
    def reconcile(manifest: Manifest, records: Iterable[RenamingRecord]) -> Manifest:
        """Merges records into ``manifest`` in place, overwriting existing keys where they stand."""
        for record in records:
            manifest[record.old_reference] = record.new_reference
        return manifest

    def persist(self, manifest: Manifest, path: str):
        directory = os.path.dirname(path) or "."
        document = {
            "images": [
                {"old_image": old_image, "new_image": new_image}
                for old_image, new_image in manifest.items()
            ]
        }

        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".manifest-", suffix=".yaml", dir=directory)
        except OSError as exc:
            raise ManifestError(f"{actionable_error('manifest_unwritable', path=path)} ({exc})") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                yaml.safe_dump(document, file_obj, default_flow_style=False, sort_keys=False)
            os.chmod(temp_path, FILE_MODE)
            os.replace(temp_path, path)
        except OSError as exc:
            raise ManifestError(f"{actionable_error('manifest_unwritable', path=path)} ({exc})") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

        self.logger.info("Wrote %s image(s) to %s", len(manifest), path)

    @staticmethod
    def _from_document(document, path: str) -> Manifest:
        if document is None:
            return {}
        if not isinstance(document, dict):
            raise ManifestError(f"Manifest '{path}' must contain a YAML mapping.")

        images = document.get("images") or []
        if not isinstance(images, list):
            raise ManifestError(f"Manifest '{path}' has an invalid `images` list.")

        manifest: Manifest = {}
        for entry in images:
            if not isinstance(entry, dict) or not entry.get("old_image") or not entry.get("new_image"):
                raise ManifestError(f"Manifest '{path}' has an entry without old_image/new_image: {entry!r}")
            manifest[str(entry["old_image"])] = str(entry["new_image"])
        return manifest
