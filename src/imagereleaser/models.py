"""Shared domain models for imagereleaser."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .constants import DEFAULT_MAX_CONCURRENCY, DEFAULT_REFERENCE_DOMAIN


class BuildVariant(str, Enum):
    NATIVE = "native"
    EXTERNAL = "external"


class TaskPhase(str, Enum):
    BUILD = "build"
    DIGEST = "digest"
    PUBLISH = "publish"


@dataclass(frozen=True)
class ServiceUnit:
    """One buildable and publishable component of a release.

    ``source_locator`` is the package directory for native builds and the build
    file for external builds.
    """

    name: str
    variant: BuildVariant
    source_locator: str
    tags: Tuple[str, ...]
    base_image: Optional[str] = None
    build_target_stage: Optional[str] = None
    namespace: Optional[str] = None
    context_dir: str = "."
    cache_key: Optional[str] = None


@dataclass(frozen=True)
class RenamingRecord:
    """Maps a stable logical image name to its freshly pushed reference."""

    old_reference: str
    new_reference: str


@dataclass(frozen=True)
class TaskOutcome:
    unit_name: str
    record: Optional[RenamingRecord] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RegistryCredentials:
    username: str
    password: str


@dataclass(frozen=True)
class ReleaseConfig:
    """Validated release configuration loaded from YAML."""

    units: Tuple[ServiceUnit, ...] = ()
    reference_domain: str = DEFAULT_REFERENCE_DOMAIN
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    remote_builder: Optional[str] = None
    build_cache_repository: Optional[str] = None
    registries: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def registry_settings(self, name: str) -> Dict[str, Any]:
        return dict(self.registries.get(name) or {})
