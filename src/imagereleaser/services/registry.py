"""Registry capability interfaces.

A registry always knows its base address. Repository management and
self-issued credentials are optional capabilities; the CLI checks for them on
the registry class and only exposes the commands a registry can serve.
"""

from abc import ABC, abstractmethod

from imagereleaser.models import RegistryCredentials


class Registry(ABC):
    """Base capability set every registry provides."""

    name = "registry"

    @abstractmethod
    def init(self):
        """Prepares the registry client, raising RegistryError when unusable."""

    @abstractmethod
    def url(self) -> str:
        """Base address images are pushed under, without scheme."""

    def host(self) -> str:
        return self.url().split("/", 1)[0]

    def repository_url(self, repository: str) -> str:
        return f"{self.url()}/{repository}"


class RepositoryManager(Registry):
    """Registry that can list and create repositories."""

    @abstractmethod
    def repository_exists(self, repository: str) -> bool:
        ...

    @abstractmethod
    def create_repository(self, repository: str):
        ...


class SelfAuthenticating(Registry):
    """Registry that issues its own push credentials."""

    @abstractmethod
    def credentials(self) -> RegistryCredentials:
        ...


def supports_repository_management(registry_class) -> bool:
    return isinstance(registry_class, type) and issubclass(registry_class, RepositoryManager)


def registry_credentials(registry: Registry):
    """Returns self-issued credentials, or None to use the docker config keychain."""
    if isinstance(registry, SelfAuthenticating):
        return registry.credentials()
    return None
