"""AWS Elastic Container Registry backed by the aws CLI."""

import threading
from typing import Any, Dict, Optional

from imagereleaser.errors import RegistryError, ReleaseError
from imagereleaser.errors_catalog import actionable_error
from imagereleaser.models import RegistryCredentials
from imagereleaser.services.registry import RepositoryManager, SelfAuthenticating


class EcrRegistry(RepositoryManager, SelfAuthenticating):
    name = "ecr"
    LOGIN_USERNAME = "AWS"
    NOT_FOUND_MARKER = "RepositoryNotFoundException"

    def __init__(self, account_id: str, region: str, command_runner, logger):
        self.account_id = str(account_id or "")
        self.region = str(region or "")
        self.command_runner = command_runner
        self.logger = logger
        self._initialized = False
        self._credentials: Optional[RegistryCredentials] = None
        self._credentials_lock = threading.Lock()

    @classmethod
    def from_config(cls, settings: Dict[str, Any], command_runner, logger) -> "EcrRegistry":
        return cls(
            account_id=settings.get("account", ""),
            region=settings.get("region", ""),
            command_runner=command_runner,
            logger=logger,
        )

    def init(self):
        for key, value in (("account", self.account_id), ("region", self.region)):
            if not value:
                raise RegistryError(actionable_error("registry_not_configured", registry=self.name, key=key))
        self._initialized = True
        self.logger.debug("ECR registry initialised for %s", self.url())

    def url(self) -> str:
        return f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com"

    def _require_init(self):
        if not self._initialized:
            raise RegistryError("ECR is not initialized")

    def repository_exists(self, repository: str) -> bool:
        self._require_init()
        result = self.command_runner.run(
            [
                "aws",
                "ecr",
                "describe-repositories",
                "--repository-names",
                repository,
                "--region",
                self.region,
                "--output",
                "json",
            ],
            check=False,
            capture_output=True,
        )
        if result.returncode == 0:
            return True
        stderr = result.stderr or ""
        if self.NOT_FOUND_MARKER in stderr:
            return False
        raise RegistryError(f"Failed checking ECR repository '{repository}': {stderr.strip()}")

    def create_repository(self, repository: str):
        self._require_init()
        try:
            self.command_runner.run(
                [
                    "aws",
                    "ecr",
                    "create-repository",
                    "--repository-name",
                    repository,
                    "--region",
                    self.region,
                ],
                capture_output=True,
            )
        except ReleaseError as exc:
            raise RegistryError(f"Failed creating ECR repository '{repository}': {exc}") from exc

    def credentials(self) -> RegistryCredentials:
        self._require_init()
        with self._credentials_lock:
            if self._credentials is None:
                try:
                    result = self.command_runner.run(
                        ["aws", "ecr", "get-login-password", "--region", self.region],
                        capture_output=True,
                    )
                except ReleaseError as exc:
                    raise RegistryError(f"Failed getting ECR login password: {exc}") from exc
                password = (result.stdout or "").strip()
                if not password:
                    raise RegistryError("ECR returned an empty login password.")
                self._credentials = RegistryCredentials(self.LOGIN_USERNAME, password)
            return self._credentials
