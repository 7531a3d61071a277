"""
imagereleaser - Build, publish and record container images for a fleet of services
"""

__version__ = "0.3.0"

from .core import Releaser
from .errors import ReleaseError

__all__ = ["Releaser", "ReleaseError"]
