import subprocess

import pytest
import yaml

from imagereleaser.core import Releaser
from imagereleaser.errors import RegistryError
from imagereleaser.models import BuildVariant, RegistryCredentials, ReleaseConfig, ServiceUnit
from imagereleaser.services.builders import NativeArtifact
from imagereleaser.services.log_sink import BufferedLogSink
from imagereleaser.services.manifest import ManifestStore
from imagereleaser.services.registry import RepositoryManager, SelfAuthenticating


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class FakeRegistry(RepositoryManager, SelfAuthenticating):
    name = "fake"

    def __init__(self, existing=(), fail_init=False):
        self.existing = set(existing)
        self.created = []
        self.fail_init = fail_init

    def init(self):
        if self.fail_init:
            raise RegistryError("registry unreachable")

    def url(self):
        return "reg.example.com"

    def repository_exists(self, repository):
        return repository in self.existing

    def create_repository(self, repository):
        self.created.append(repository)

    def credentials(self):
        return RegistryCredentials("bot", "token")


class FakeNativeBuilder:
    def __init__(self):
        self.calls = []

    def build(self, source_locator, base_image, platform):
        self.calls.append(source_locator)
        if "broken" in source_locator:
            raise RuntimeError("compile error")
        return NativeArtifact(source_locator, "/tmp/layout")

    def digest(self, artifact):
        return "sha256:" + artifact.source_locator.rsplit("/", 1)[-1]


class FakePublisher:
    def publish(self, artifact, host, repository_ref, tags, credentials=None):
        return repository_ref


class FakeExternalBuilder:
    def build(self, unit, repository_ref, cache_ref=None):
        return None

    def digest(self, repository_ref, tag):
        return "sha256:ext"


class CollectingSink(BufferedLogSink):
    def __init__(self):
        super().__init__(target=None)
        self.replayed = False
        self.discarded = False

    def replay(self):
        self.replayed = True

    def discard(self):
        self.discarded = True


def _native(name) -> ServiceUnit:
    return ServiceUnit(
        name=name,
        variant=BuildVariant.NATIVE,
        source_locator=f"./cmd/{name}",
        tags=("main",),
        base_image="BASE_URL/base:1",
    )


def _releaser(tmp_path, units, namespace="", registry=None, **kwargs):
    calls = []

    def fake_run(cmd, **_kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    releaser = Releaser(
        config=ReleaseConfig(units=tuple(units), reference_domain="svc"),
        registry=registry or FakeRegistry(),
        namespace=namespace,
        manifest_store=ManifestStore(logger=DummyLogger(), root_dir=str(tmp_path / ".imagereleaser")),
        **kwargs,
    )
    releaser.native_builder = FakeNativeBuilder()
    releaser.external_builder = FakeExternalBuilder()
    releaser.publisher = FakePublisher()
    releaser.command_runner.run = fake_run
    releaser.docker_calls = calls
    return releaser


def test_release_with_namespace_reconciles_manifest(tmp_path):
    manifest_path = tmp_path / ".imagereleaser" / "staging.yaml"
    manifest_path.parent.mkdir()
    manifest_path.write_text(
        "images:\n"
        "  - old_image: svc/a\n    new_image: repo/a@sha256:111\n"
        "  - old_image: svc/z\n    new_image: repo/z@sha256:999\n",
        encoding="utf-8",
    )
    releaser = _releaser(tmp_path, [_native("a"), _native("b"), _native("c")], namespace="staging", max_concurrency=2)

    assert releaser.release() == 0

    document = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
    images = document["images"]
    assert images == [
        {"old_image": "svc/a", "new_image": "reg.example.com/staging/a@sha256:a"},
        {"old_image": "svc/z", "new_image": "repo/z@sha256:999"},
        {"old_image": "svc/b", "new_image": "reg.example.com/staging/b@sha256:b"},
        {"old_image": "svc/c", "new_image": "reg.example.com/staging/c@sha256:c"},
    ]


def test_release_without_namespace_never_touches_manifest(tmp_path, monkeypatch):
    releaser = _releaser(tmp_path, [_native("a")], namespace="")

    def fail_update(*_args, **_kwargs):
        raise AssertionError("manifest must not be updated without a namespace")

    monkeypatch.setattr(releaser.manifest_store, "load", fail_update)
    monkeypatch.setattr(releaser.manifest_store, "persist", fail_update)

    assert releaser.release() == 0
    assert not (tmp_path / ".imagereleaser").exists()


def test_unreadable_manifest_aborts_before_any_build(tmp_path, monkeypatch):
    manifest_path = tmp_path / ".imagereleaser" / "staging.yaml"
    manifest_path.parent.mkdir()
    manifest_path.write_text("images: [\n", encoding="utf-8")
    sink = CollectingSink()
    releaser = _releaser(tmp_path, [_native("a"), _native("b")], namespace="staging", log_sink=sink)
    monkeypatch.setattr(releaser.scheduler, "run", lambda *_a, **_k: pytest.fail("pool must not run"))

    assert releaser.release() == 1
    assert releaser.native_builder.calls == []
    assert sink.replayed is True
    assert manifest_path.read_text(encoding="utf-8") == "images: [\n"


def test_release_failure_returns_error_and_skips_manifest(tmp_path):
    sink = CollectingSink()
    releaser = _releaser(
        tmp_path,
        [_native("a"), _native("broken")],
        namespace="staging",
        log_sink=sink,
    )

    assert releaser.release() == 1
    assert sink.replayed is True
    assert not (tmp_path / ".imagereleaser" / "staging.yaml").exists()


def test_successful_release_discards_buffered_logs(tmp_path):
    sink = CollectingSink()
    releaser = _releaser(tmp_path, [_native("a")], log_sink=sink)

    assert releaser.release() == 0
    assert sink.discarded is True
    assert sink.replayed is False


def test_registry_init_failure_is_fatal_before_any_build(tmp_path, monkeypatch):
    releaser = _releaser(tmp_path, [_native("a")], registry=FakeRegistry(fail_init=True))
    monkeypatch.setattr(releaser.scheduler, "run", lambda *_a, **_k: pytest.fail("pool must not run"))

    assert releaser.release() == 1


def test_external_units_trigger_docker_login_once(tmp_path):
    units = [
        ServiceUnit(name=name, variant=BuildVariant.EXTERNAL, source_locator="Dockerfile", tags=("main",))
        for name in ("web", "worker")
    ]
    releaser = _releaser(tmp_path, units)

    assert releaser.release() == 0

    logins = [cmd for cmd in releaser.docker_calls if cmd[:2] == ["docker", "login"]]
    assert logins == [["docker", "login", "--username", "bot", "--password-stdin", "reg.example.com"]]


def test_excluded_services_are_not_built(tmp_path):
    releaser = _releaser(tmp_path, [_native("a"), _native("broken")], excluded_services=["broken"])

    assert [unit.name for unit in releaser.selected_units()] == ["a"]
    assert releaser.release() == 0


def test_create_missing_repositories_creates_only_absent(tmp_path):
    registry = FakeRegistry(existing={"staging/a"})
    releaser = _releaser(tmp_path, [_native("a"), _native("b")], namespace="staging", registry=registry)

    assert releaser.create_missing_repositories() == 0
    assert registry.created == ["staging/b"]


def test_create_missing_repositories_requires_namespace(tmp_path):
    registry = FakeRegistry()
    releaser = _releaser(tmp_path, [_native("a")], namespace="", registry=registry)

    assert releaser.create_missing_repositories() == 1
    assert registry.created == []
