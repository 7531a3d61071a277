"""Okteto registry configured from the Okteto environment."""

import os
from typing import Any, Dict, Mapping, Optional

from imagereleaser.errors import RegistryError
from imagereleaser.errors_catalog import actionable_error
from imagereleaser.models import RegistryCredentials
from imagereleaser.services.registry import SelfAuthenticating


class OktetoRegistry(SelfAuthenticating):
    name = "okteto"
    REQUIRED_ENV = (
        ("registry_url", "OKTETO_REGISTRY_URL"),
        ("namespace", "OKTETO_NAMESPACE"),
        ("username", "OKTETO_USERNAME"),
        ("token", "OKTETO_TOKEN"),
    )

    def __init__(self, logger, environ: Optional[Mapping[str, str]] = None):
        self.logger = logger
        self.environ = environ if environ is not None else os.environ
        self.registry_url = ""
        self.namespace = ""
        self.username = ""
        self.token = ""

    @classmethod
    def from_config(cls, _settings: Dict[str, Any], _command_runner, logger) -> "OktetoRegistry":
        return cls(logger=logger)

    def init(self):
        for attribute, variable in self.REQUIRED_ENV:
            value = self.environ.get(variable)
            if value is None:
                raise RegistryError(
                    actionable_error("registry_env_missing", registry="Okteto", variable=variable)
                )
            setattr(self, attribute, value)
        self.logger.debug("Okteto registry initialised for %s", self.url())

    def url(self) -> str:
        return f"{self.registry_url}/{self.namespace}"

    def credentials(self) -> RegistryCredentials:
        return RegistryCredentials(self.username, self.token)
