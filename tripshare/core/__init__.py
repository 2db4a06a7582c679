"""
Core building blocks: database engine, Redis cache client, logging,
error taxonomy and the role to permission table.
"""

from .cache_client import CacheClient, get_cache_client, close_cache_client
from .exceptions import ErrorCategory, ErrorCode, TripShareException, StoreUnavailableError
from .logging import configure_logging
from .permissions import CollaboratorRole, Permission, permissions_for, role_has_permission

__all__ = [
    "CacheClient",
    "get_cache_client",
    "close_cache_client",
    "ErrorCategory",
    "ErrorCode",
    "TripShareException",
    "StoreUnavailableError",
    "configure_logging",
    "CollaboratorRole",
    "Permission",
    "permissions_for",
    "role_has_permission",
]
