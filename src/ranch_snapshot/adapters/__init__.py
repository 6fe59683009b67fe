"""Entity store adapters package.

Provides the ``DatabaseClient`` Protocol and concrete async adapter
implementations for PostgreSQL, an in-process store, and (optionally)
Supabase.

``AsyncSupabaseAdapter`` is only available when the ``supabase`` extra
is installed.  A missing ``supabase`` dependency does not prevent
importing the rest of the package.

Usage:
    from ranch_snapshot.adapters import DatabaseClient, AsyncPostgresAdapter

    # With supabase extra installed:
    from ranch_snapshot.adapters import AsyncSupabaseAdapter
"""

from ranch_snapshot.adapters.base import DatabaseClient, RowNotFoundError
from ranch_snapshot.adapters.memory import MemoryDatabase
from ranch_snapshot.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "RowNotFoundError",
    "AsyncPostgresAdapter",
    "MemoryDatabase",
]

try:
    from ranch_snapshot.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
