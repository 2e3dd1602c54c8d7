"""
Grant Store clients.
"""
from .grant_store_service import GrantStore, HttpGrantStoreClient, create_grant_store_client
from .memory_grant_store import InMemoryGrantStore

__all__ = [
    'GrantStore',
    'HttpGrantStoreClient',
    'create_grant_store_client',
    'InMemoryGrantStore',
]
