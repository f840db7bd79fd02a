"""HTTP surface of the seller gateway."""

from .app import create_app
from .dependencies import Services, build_services

__all__ = ["Services", "build_services", "create_app"]
