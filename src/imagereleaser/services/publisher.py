"""Publishes natively built images with ``crane``."""

import threading
from typing import List, Optional, Sequence

from imagereleaser.models import RegistryCredentials
from imagereleaser.services.builders import NativeArtifact


class CranePublisher:
    """Pushes OCI layouts and applies extra tags.

    Authentication happens once per publisher, however many tasks publish
    through it.
    """

    def __init__(self, command_runner, logger):
        self.command_runner = command_runner
        self.logger = logger
        self._auth_lock = threading.Lock()
        self._authenticated_hosts = set()

    def authenticate(self, host: str, credentials: Optional[RegistryCredentials]):
        with self._auth_lock:
            if host in self._authenticated_hosts:
                return
            if credentials is None:
                self.logger.info("Using the default docker config.json credentials for login")
            else:
                self.command_runner.run(
                    [
                        "crane",
                        "auth",
                        "login",
                        host,
                        "-u",
                        credentials.username,
                        "--password-stdin",
                    ],
                    capture_output=True,
                    input_text=credentials.password,
                )
            self._authenticated_hosts.add(host)

    def push_commands(self, artifact: NativeArtifact, repository_ref: str, tags: Sequence[str]) -> List[List[str]]:
        first, rest = tags[0], tags[1:]
        commands = [["crane", "push", artifact.layout_path, f"{repository_ref}:{first}"]]
        for tag in rest:
            commands.append(["crane", "tag", f"{repository_ref}:{first}", tag])
        return commands

    def publish(
        self,
        artifact: NativeArtifact,
        host: str,
        repository_ref: str,
        tags: Sequence[str],
        credentials: Optional[RegistryCredentials] = None,
    ) -> str:
        if not tags:
            raise ValueError("At least one tag is required to publish an image.")
        self.authenticate(host, credentials)
        for cmd in self.push_commands(artifact, repository_ref, tags):
            self.command_runner.run(cmd, capture_output=True)
        self.logger.info("Published %s with tags %s", repository_ref, ", ".join(tags))
        return repository_ref
