"""Personal book-tracking client for a hosted Supabase-style backend."""

from .auth import AuthClient, Subscription
from .errors import AuthError, ConfigError, ShelfkeeperError, StoreError
from .library import LibraryClient
from .models import BookInput, BookUpdate, LibraryEntry, Session, Shelf, User
from .store import Store

__version__ = "0.1.0"

__all__ = [
    "AuthClient",
    "AuthError",
    "BookInput",
    "BookUpdate",
    "ConfigError",
    "LibraryClient",
    "LibraryEntry",
    "Session",
    "Shelf",
    "ShelfkeeperError",
    "Store",
    "StoreError",
    "Subscription",
    "User",
]
