"""
Identities as the core sees them.

The directory owns identity records; the core reads them and mutates them only
through the UserDirectory interface (last login, password, block flags, face-id flag).
"""

from unifiedauth.core.identity.directory import InMemoryUserDirectory, UserDirectory, normalize_email
from unifiedauth.core.identity.models import ClientInfo, Identity, IdentitySnapshot, UserRole

__all__ = [
    "ClientInfo",
    "Identity",
    "IdentitySnapshot",
    "InMemoryUserDirectory",
    "UserDirectory",
    "UserRole",
    "normalize_email",
]
