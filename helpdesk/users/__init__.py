"""User directory consulted by ticket operations."""

from .models import Actor, UserAccount, UserRole
from .repository import InMemoryUserRepository, UserDirectory, UserRepository

__all__ = [
    "Actor",
    "InMemoryUserRepository",
    "UserAccount",
    "UserDirectory",
    "UserRepository",
    "UserRole",
]
