"""Docker runtime services for imagereleaser."""

from typing import Callable, List, Optional

from imagereleaser.errors import CredentialBootstrapError, ReleaseError
from imagereleaser.errors_catalog import actionable_error
from imagereleaser.models import RegistryCredentials
from imagereleaser.services.registry import registry_credentials


class DockerRuntimeService:
    """Checks the docker toolchain and logs docker in before external builds push."""

    def __init__(self, logger, run_cmd: Callable):
        self.logger = logger
        self.run_cmd = run_cmd

    def validate_environment(self, remote_builder: Optional[str] = None):
        self.logger.info("Validating Docker environment...")
        self.run_cmd(["docker", "--version"], capture_output=True)
        buildx_cmd: List[str] = ["docker"]
        if remote_builder:
            buildx_cmd += ["--context", remote_builder]
        self.run_cmd(buildx_cmd + ["buildx", "version"], capture_output=True)
        self.logger.info("Docker buildx is available.")

    def login(self, host: str, credentials: RegistryCredentials):
        self.logger.info("Logging docker in to %s", host)
        self.run_cmd(
            ["docker", "login", "--username", credentials.username, "--password-stdin", host],
            capture_output=True,
            input_text=credentials.password,
        )

    def bootstrap_registry_login(self, registry):
        """Runs the one-time login external builds depend on."""
        host = registry.host()
        try:
            credentials = registry_credentials(registry)
            if credentials is None:
                self.logger.info("Using the default docker config.json credentials for %s", host)
                return
            self.login(host, credentials)
        except ReleaseError as exc:
            raise CredentialBootstrapError(
                f"{actionable_error('credential_bootstrap_failed', host=host)} ({exc})"
            ) from exc
        self.logger.info("Docker logged in to %s.", host)
