"""Configuration loader for imagereleaser."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from imagereleaser.constants import (
    DEFAULT_BASE_IMAGE,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_REFERENCE_DOMAIN,
    DEFAULT_TAGS,
)
from imagereleaser.errors import ConfigurationError
from imagereleaser.errors_catalog import actionable_error
from imagereleaser.models import BuildVariant, ReleaseConfig, ServiceUnit


class ConfigLoader:
    """Loads the YAML release configuration and turns it into service units."""

    SUPPORTED_KEYS = {
        "reference_domain",
        "base_image",
        "tags",
        "max_concurrency",
        "remote_builder",
        "build_cache",
        "ecr",
        "native_services",
        "external_services",
        "verbose",
        "log_file",
    }
    NATIVE_SERVICE_KEYS = {"name", "main", "tags", "base_image", "namespace"}
    EXTERNAL_SERVICE_KEYS = {"dockerfile", "context", "tags", "cache_key", "namespace", "targets"}
    REGISTRY_SECTIONS = ("ecr",)

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(actionable_error("config_not_found", path=str(config_path)))

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigurationError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigurationError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def build_release_config(self, values: Dict[str, Any]) -> ReleaseConfig:
        default_tags = self._tags(values.get("tags"), DEFAULT_TAGS, "tags")
        default_base_image = str(values.get("base_image") or DEFAULT_BASE_IMAGE)

        units: List[ServiceUnit] = []
        for entry in self._list(values, "native_services"):
            units.append(self._native_unit(entry, default_tags, default_base_image))
        for entry in self._list(values, "external_services"):
            units.extend(self._external_units(entry, default_tags))

        seen = set()
        for unit in units:
            if unit.name in seen:
                raise ConfigurationError(f"Duplicate service name in configuration: {unit.name}")
            seen.add(unit.name)

        max_concurrency = values.get("max_concurrency", DEFAULT_MAX_CONCURRENCY)
        if not isinstance(max_concurrency, int) or isinstance(max_concurrency, bool) or max_concurrency < 1:
            raise ConfigurationError("`max_concurrency` must be a positive integer.")

        build_cache = values.get("build_cache") or {}
        if not isinstance(build_cache, dict):
            raise ConfigurationError("`build_cache` must be a mapping with a `repository` key.")

        registries = {}
        for section in self.REGISTRY_SECTIONS:
            settings = values.get(section)
            if settings is None:
                continue
            if not isinstance(settings, dict):
                raise ConfigurationError(f"`{section}` must be a mapping.")
            registries[section] = settings

        return ReleaseConfig(
            units=tuple(units),
            reference_domain=str(values.get("reference_domain") or DEFAULT_REFERENCE_DOMAIN),
            max_concurrency=max_concurrency,
            remote_builder=values.get("remote_builder") or None,
            build_cache_repository=build_cache.get("repository") or None,
            registries=registries,
        )

    def load_release_config(self, config_path: Optional[str]) -> ReleaseConfig:
        return self.build_release_config(self.load(config_path))

    def load_excluded_services(self, exclude_path: Optional[str]) -> Tuple[List[str], bool]:
        """Returns the excluded service names and whether the file was found."""
        if not exclude_path:
            return [], False

        path = Path(exclude_path)
        if not path.exists():
            return [], False

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Failed parsing excluded services file '{exclude_path}': {exc}") from exc

        if parsed is None:
            return [], True
        if not isinstance(parsed, dict) or not isinstance(parsed.get("services", []), list):
            raise ConfigurationError(
                f"Excluded services file '{exclude_path}' must contain a `services` list."
            )
        return [str(name) for name in parsed.get("services") or []], True

    def _list(self, values: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
        entries = values.get(key) or []
        if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
            raise ConfigurationError(f"`{key}` must be a list of mappings.")
        return entries

    @staticmethod
    def _tags(raw: Any, default: Sequence[str], where: str) -> Tuple[str, ...]:
        if raw is None:
            return tuple(default)
        if not isinstance(raw, list) or not all(isinstance(tag, (str, int, float)) for tag in raw):
            raise ConfigurationError(f"Tags for {where} must be a list of strings.")
        return tuple(str(tag) for tag in raw)

    @staticmethod
    def _check_keys(entry: Dict[str, Any], allowed: set, where: str):
        unknown = sorted(set(entry.keys()) - allowed)
        if unknown:
            raise ConfigurationError(f"Unknown keys for {where}: {', '.join(unknown)}")

    def _native_unit(
        self,
        entry: Dict[str, Any],
        default_tags: Tuple[str, ...],
        default_base_image: str,
    ) -> ServiceUnit:
        name = entry.get("name")
        if not name:
            raise ConfigurationError("Every native service needs a `name`.")
        self._check_keys(entry, self.NATIVE_SERVICE_KEYS, f"native service '{name}'")
        main = entry.get("main")
        if not main:
            raise ConfigurationError(f"Native service '{name}' needs a `main` package path.")

        return ServiceUnit(
            name=str(name),
            variant=BuildVariant.NATIVE,
            source_locator=str(main),
            tags=self._tags(entry.get("tags"), default_tags, f"service '{name}'"),
            base_image=str(entry.get("base_image") or default_base_image),
            namespace=entry.get("namespace") or None,
        )

    def _external_units(self, entry: Dict[str, Any], default_tags: Tuple[str, ...]) -> List[ServiceUnit]:
        dockerfile = entry.get("dockerfile")
        if not dockerfile:
            raise ConfigurationError("Every external service needs a `dockerfile`.")
        self._check_keys(entry, self.EXTERNAL_SERVICE_KEYS, f"external service '{dockerfile}'")

        targets = entry.get("targets") or []
        if not isinstance(targets, list) or not targets:
            raise ConfigurationError(f"External service '{dockerfile}' needs a non-empty `targets` list.")
        if not all(isinstance(target, dict) and target.get("name") for target in targets):
            raise ConfigurationError(f"Every target of '{dockerfile}' needs a `name`.")

        tags = self._tags(entry.get("tags"), default_tags, f"external service '{dockerfile}'")
        if not tags:
            raise ConfigurationError(
                f"External service '{dockerfile}' needs at least one tag to resolve its digest."
            )

        # siblings built from one file share cache layers
        cache_key = entry.get("cache_key") or "-".join(str(target["name"]) for target in targets)

        return [
            ServiceUnit(
                name=str(target["name"]),
                variant=BuildVariant.EXTERNAL,
                source_locator=str(dockerfile),
                tags=tags,
                build_target_stage=target.get("target") or None,
                namespace=entry.get("namespace") or None,
                context_dir=str(entry.get("context") or "."),
                cache_key=str(cache_key),
            )
            for target in targets
        ]
