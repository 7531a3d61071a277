"""Actionable error catalog for imagereleaser."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "config_not_found": {
        "what": "Config file not found: {path}",
        "next": "Create `.imagereleaser.yml` or point `--config` at an existing file.",
    },
    "registry_env_missing": {
        "what": "Failed getting {registry}'s registry: {variable} not set.",
        "next": "Export `{variable}` in the environment running the release.",
    },
    "registry_not_configured": {
        "what": "Registry `{registry}` is missing `{key}` in the configuration.",
        "next": "Add `{registry}.{key}` to the config file.",
    },
    "credential_bootstrap_failed": {
        "what": "Could not log in to {host} for external builds.",
        "next": "Check registry credentials and that `docker login` works on this host.",
    },
    "manifest_unreadable": {
        "what": "Could not read image manifest '{path}'.",
        "next": "Fix or remove the file; a missing manifest is recreated on the next release.",
    },
    "manifest_unwritable": {
        "what": "Could not write image manifest '{path}'.",
        "next": "Check permissions on the manifest directory and free disk space.",
    },
    "namespace_required": {
        "what": "A non-empty namespace is required for {command}.",
        "next": "Pass `--namespace <name>`.",
    },
    "release_failed": {
        "what": "Release finished with failed services (first failure: {unit}).",
        "next": "Re-run with `--verbose` to stream build output and fix the failing service.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
