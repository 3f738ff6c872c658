"""Domain services package."""
from services.identity_sync import IdentitySyncService, InvalidIdentityEvent

__all__ = ["IdentitySyncService", "InvalidIdentityEvent"]
