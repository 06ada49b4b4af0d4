"""Modules that implement the commands of cloudmount."""

from .common import Operations
from .provider import ProviderOperations
from .storage import StorageOperations

__all__ = ["Operations", "ProviderOperations", "StorageOperations"]
