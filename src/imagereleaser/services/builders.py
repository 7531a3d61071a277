"""Image builders for the two build variants.

Native services are compiled straight into an OCI layout by ``ko``; external
services are built and pushed by ``docker buildx`` from a build file.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

from imagereleaser.constants import TARGET_PLATFORM
from imagereleaser.errors import DigestResolutionError, ReleaseError
from imagereleaser.models import ServiceUnit


@dataclass(frozen=True)
class NativeArtifact:
    """A locally built image waiting to be published."""

    source_locator: str
    layout_path: str


class NativeBuilder(ABC):
    @abstractmethod
    def build(self, source_locator: str, base_image: str, platform: str) -> NativeArtifact:
        ...

    @abstractmethod
    def digest(self, artifact: NativeArtifact) -> str:
        ...


class KoBuilder(NativeBuilder):
    """Builds native services with ``ko`` without pushing them."""

    def __init__(self, command_runner, logger, work_dir: Optional[str] = None):
        self.command_runner = command_runner
        self.logger = logger
        self.work_dir = work_dir

    def build_command(self, source_locator: str, platform: str, layout_path: str) -> List[str]:
        return [
            "ko",
            "build",
            source_locator,
            f"--platform={platform}",
            "--sbom=none",
            "--push=false",
            f"--oci-layout-path={layout_path}",
        ]

    def build(self, source_locator: str, base_image: str, platform: str = TARGET_PLATFORM) -> NativeArtifact:
        layout_path = tempfile.mkdtemp(prefix="imagereleaser-layout-", dir=self.work_dir)
        self.logger.info("Building %s on %s (%s)", source_locator, base_image, platform)
        self.command_runner.run(
            self.build_command(source_locator, platform, layout_path),
            capture_output=True,
            env={"KO_DEFAULTBASEIMAGE": base_image},
        )
        return NativeArtifact(source_locator=source_locator, layout_path=layout_path)

    def digest(self, artifact: NativeArtifact) -> str:
        index_path = os.path.join(artifact.layout_path, "index.json")
        try:
            with open(index_path, "r", encoding="utf-8") as file_obj:
                index = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise DigestResolutionError(f"Could not read OCI layout index '{index_path}': {exc}") from exc

        manifests = index.get("manifests") if isinstance(index, dict) else None
        if not manifests:
            raise DigestResolutionError(f"OCI layout '{artifact.layout_path}' contains no manifests.")
        digest = manifests[0].get("digest") if isinstance(manifests[0], dict) else None
        if not digest:
            raise DigestResolutionError(f"OCI layout '{artifact.layout_path}' has a manifest without digest.")
        return digest


class ExternalBuilder:
    """Builds external services with ``docker buildx`` and pushes them in the same step."""

    def __init__(
        self,
        command_runner,
        logger,
        remote_builder: Optional[str] = None,
        digest_retry_count: int = 1,
        digest_retry_backoff_seconds: float = 2.0,
    ):
        self.command_runner = command_runner
        self.logger = logger
        self.remote_builder = remote_builder
        self.digest_retry_count = digest_retry_count
        self.digest_retry_backoff_seconds = digest_retry_backoff_seconds

    def build_command(
        self,
        unit: ServiceUnit,
        repository_ref: str,
        cache_ref: Optional[str] = None,
        platform: str = TARGET_PLATFORM,
    ) -> List[str]:
        cmd = ["docker"]
        if self.remote_builder:
            cmd += ["--context", self.remote_builder]
        cmd += [
            "buildx",
            "build",
            "--output",
            "type=registry",
            f"--platform={platform}",
            "--progress=plain",
        ]
        if unit.build_target_stage:
            cmd += ["--target", unit.build_target_stage]
        for tag in unit.tags:
            cmd += ["-t", f"{repository_ref}:{tag}"]
        if cache_ref:
            cmd += [
                "--cache-from",
                f"type=registry,ref={cache_ref}",
                "--cache-to",
                f"type=registry,ref={cache_ref},mode=max",
            ]
        cmd += ["-f", unit.source_locator, unit.context_dir]
        return cmd

    def build(self, unit: ServiceUnit, repository_ref: str, cache_ref: Optional[str] = None):
        self.logger.info("Building %s from %s", repository_ref, unit.source_locator)
        self.command_runner.run(
            self.build_command(unit, repository_ref, cache_ref),
            capture_output=True,
            env={"DOCKER_BUILDKIT": "1"},
        )

    def digest(self, repository_ref: str, tag: str) -> str:
        image_ref = f"{repository_ref}:{tag}"
        try:
            result = self.command_runner.run(
                ["docker", "manifest", "inspect", "--verbose", image_ref],
                capture_output=True,
                retry_count=self.digest_retry_count,
                retry_backoff_seconds=self.digest_retry_backoff_seconds,
            )
        except ReleaseError as exc:
            raise DigestResolutionError(f"Could not inspect manifest of {image_ref}: {exc}") from exc
        return parse_manifest_digest(result.stdout or "", image_ref)


def parse_manifest_digest(output: str, image_ref: str) -> str:
    """Returns the first descriptor digest of ``docker manifest inspect --verbose`` output."""
    try:
        parsed: Any = json.loads(output)
    except json.JSONDecodeError as exc:
        raise DigestResolutionError(f"Unparseable manifest for {image_ref}: {exc}") from exc

    if isinstance(parsed, dict):
        parsed = [parsed]
    if not isinstance(parsed, list) or not parsed:
        raise DigestResolutionError(f"Manifest for {image_ref} contains no descriptors.")

    first = parsed[0]
    descriptor = first.get("Descriptor") if isinstance(first, dict) else None
    digest = descriptor.get("digest") if isinstance(descriptor, dict) else None
    if not digest:
        raise DigestResolutionError(f"Manifest descriptor for {image_ref} has no digest.")
    return digest
