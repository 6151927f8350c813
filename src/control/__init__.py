"""Management-plane collaborators for the autoscaler."""

from src.control.arm import ArmResourceControl, is_transient_http_error
from src.control.credentials import ClientSecretCredential, StaticTokenCredential

__all__ = [
    "ArmResourceControl",
    "is_transient_http_error",
    "ClientSecretCredential",
    "StaticTokenCredential",
]
