"""Build-publish task: one service unit in, one renaming record out."""

from contextlib import contextmanager
from typing import Optional

from imagereleaser.constants import BASE_URL_PLACEHOLDER, DIGEST_PREFIX, TARGET_PLATFORM
from imagereleaser.errors import DigestResolutionError, TaskError
from imagereleaser.models import BuildVariant, RenamingRecord, ServiceUnit, TaskPhase
from imagereleaser.services.registry import registry_credentials


def resolve_base_image(base_image: str, base_url: str) -> str:
    return base_image.replace(BASE_URL_PLACEHOLDER, base_url)


def digest_tag(digest: str) -> str:
    if digest.startswith(DIGEST_PREFIX):
        return digest[len(DIGEST_PREFIX):]
    return digest


@contextmanager
def task_phase(unit: ServiceUnit, phase: TaskPhase):
    """Wraps any failure inside the block with the unit name and phase."""
    try:
        yield
    except TaskError:
        raise
    except Exception as exc:
        raise TaskError(unit.name, phase.value, exc) from exc


class BuildPublishTask:
    """Builds, publishes and names the image of a single service unit.

    Instances are shared by every worker of a release, so they hold no
    per-unit state.
    """

    def __init__(
        self,
        registry,
        native_builder,
        external_builder,
        publisher,
        logger,
        reference_domain: str,
        namespace: Optional[str] = None,
        build_cache_repository: Optional[str] = None,
        platform: str = TARGET_PLATFORM,
    ):
        self.registry = registry
        self.native_builder = native_builder
        self.external_builder = external_builder
        self.publisher = publisher
        self.logger = logger
        self.reference_domain = reference_domain
        self.namespace = namespace or None
        self.build_cache_repository = build_cache_repository
        self.platform = platform

    def __call__(self, unit: ServiceUnit) -> RenamingRecord:
        return self.run(unit)

    def run(self, unit: ServiceUnit) -> RenamingRecord:
        self.logger.info("Building %s service: %s", unit.variant.value, unit.name)
        if unit.variant is BuildVariant.EXTERNAL:
            record = self.run_external(unit)
        else:
            record = self.run_native(unit)
        self.logger.info("%s -> %s", record.old_reference, record.new_reference)
        return record

    def repository_name(self, unit: ServiceUnit) -> str:
        namespace = unit.namespace or self.namespace
        if namespace:
            return f"{namespace}/{unit.name}"
        return unit.name

    def old_reference(self, unit: ServiceUnit) -> str:
        return f"{self.reference_domain}/{unit.name}"

    def cache_ref(self, unit: ServiceUnit) -> Optional[str]:
        if not self.build_cache_repository or not unit.cache_key:
            return None
        return f"{self.registry.repository_url(self.build_cache_repository)}:{unit.cache_key}"

    def run_native(self, unit: ServiceUnit) -> RenamingRecord:
        with task_phase(unit, TaskPhase.BUILD):
            repository_ref = self.registry.repository_url(self.repository_name(unit))
            base_image = resolve_base_image(unit.base_image or "", self.registry.url())
            artifact = self.native_builder.build(unit.source_locator, base_image, self.platform)

        with task_phase(unit, TaskPhase.DIGEST):
            digest = self.native_builder.digest(artifact)
            if not digest:
                raise DigestResolutionError(f"Build of {unit.source_locator} returned an empty digest.")

        with task_phase(unit, TaskPhase.PUBLISH):
            tags = list(unit.tags) + [digest_tag(digest)]
            published = self.publisher.publish(
                artifact,
                self.registry.host(),
                repository_ref,
                tags,
                credentials=registry_credentials(self.registry),
            )

        return RenamingRecord(
            old_reference=self.old_reference(unit),
            new_reference=f"{published}@{digest}",
        )

    def run_external(self, unit: ServiceUnit) -> RenamingRecord:
        with task_phase(unit, TaskPhase.BUILD):
            repository_ref = self.registry.repository_url(self.repository_name(unit))
            if not unit.tags:
                raise ValueError("external builds need at least one tag")
            self.external_builder.build(unit, repository_ref, self.cache_ref(unit))

        with task_phase(unit, TaskPhase.DIGEST):
            digest = self.external_builder.digest(repository_ref, unit.tags[0])

        return RenamingRecord(
            old_reference=self.old_reference(unit),
            new_reference=f"{repository_ref}@{digest}",
        )
