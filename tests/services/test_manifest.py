from pathlib import Path

import pytest
import yaml

from imagereleaser.errors import ManifestError
from imagereleaser.models import RenamingRecord
from imagereleaser.services.manifest import ManifestStore


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


def _store(tmp_path) -> ManifestStore:
    return ManifestStore(logger=DummyLogger(), root_dir=str(tmp_path / ".imagereleaser"))


def test_load_missing_manifest_returns_empty(tmp_path):
    store = _store(tmp_path)

    assert store.load(store.path_for("staging")) == {}


def test_reconcile_overwrites_existing_entry_in_place(tmp_path):
    store = _store(tmp_path)
    path = store.path_for("staging")
    store.persist({"svc/a": "repo/a@sha256:111", "svc/b": "repo/b@sha256:999"}, path)

    manifest = store.reconcile(store.load(path), [RenamingRecord("svc/a", "repo/a@sha256:222")])
    store.persist(manifest, path)

    assert list(manifest.items()) == [
        ("svc/a", "repo/a@sha256:222"),
        ("svc/b", "repo/b@sha256:999"),
    ]
    document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    assert document == {
        "images": [
            {"old_image": "svc/a", "new_image": "repo/a@sha256:222"},
            {"old_image": "svc/b", "new_image": "repo/b@sha256:999"},
        ]
    }


def test_reconcile_appends_new_keys_after_existing_ones():
    manifest = {"svc/a": "repo/a@sha256:111"}

    ManifestStore.reconcile(manifest, [RenamingRecord("svc/c", "repo/c@sha256:333")])

    assert list(manifest) == ["svc/a", "svc/c"]


def test_reconcile_is_idempotent():
    records = [
        RenamingRecord("svc/a", "repo/a@sha256:222"),
        RenamingRecord("svc/new", "repo/new@sha256:444"),
    ]

    once = ManifestStore.reconcile({"svc/a": "repo/a@sha256:111", "svc/b": "x"}, records)
    twice = ManifestStore.reconcile(dict(once), records)

    assert list(twice.items()) == list(once.items())


def test_reconcile_keeps_last_applied_record_for_a_key():
    first = RenamingRecord("svc/a", "repo/a@sha256:1")
    second = RenamingRecord("svc/a", "repo/a@sha256:2")
    other = RenamingRecord("svc/b", "repo/b@sha256:3")

    forward = ManifestStore.reconcile({}, [first, other, second])
    backward = ManifestStore.reconcile({}, [second, other, first])

    assert forward["svc/a"] == "repo/a@sha256:2"
    assert backward["svc/a"] == "repo/a@sha256:1"
    assert forward["svc/b"] == backward["svc/b"] == "repo/b@sha256:3"


def test_persist_creates_parent_directories(tmp_path):
    store = _store(tmp_path)
    path = store.path_for("prod")

    store.persist({"svc/a": "repo/a@sha256:1"}, path)

    assert store.load(path) == {"svc/a": "repo/a@sha256:1"}
    assert [p.name for p in (tmp_path / ".imagereleaser").iterdir()] == ["prod.yaml"]


def test_load_rejects_malformed_manifest(tmp_path):
    store = _store(tmp_path)
    path = tmp_path / "broken.yaml"
    path.write_text("images:\n  - old_image: svc/a\n", encoding="utf-8")

    with pytest.raises(ManifestError, match="old_image/new_image"):
        store.load(str(path))


def test_load_reports_unparseable_yaml(tmp_path):
    store = _store(tmp_path)
    path = tmp_path / "broken.yaml"
    path.write_text("images: [\n", encoding="utf-8")

    with pytest.raises(ManifestError, match="Could not read image manifest"):
        store.load(str(path))
