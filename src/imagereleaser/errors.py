"""Domain errors for imagereleaser."""


class ReleaseError(RuntimeError):
    """Raised when the release cannot continue safely."""


class ConfigurationError(ReleaseError):
    """Service declarations or CLI inputs are unusable."""


class RegistryError(ReleaseError):
    """The registry could not be initialised or queried."""


class CredentialBootstrapError(ReleaseError):
    """The one-time registry login for external builds failed."""


class DigestResolutionError(ReleaseError):
    """A pushed image digest could not be determined."""


class ManifestError(ReleaseError):
    """The persisted image manifest could not be read or written."""


class TaskError(ReleaseError):
    """A single build-publish task failed in one of its phases."""

    def __init__(self, unit_name: str, phase: str, cause: BaseException):
        self.unit_name = unit_name
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase} phase failed for service '{unit_name}': {cause}")
