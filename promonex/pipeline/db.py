"""
Supabase service client shared by the pipeline services.

All reads and writes go through the service role key (RLS bypass); the
shop boundary is enforced in the services themselves.
"""

import os
from datetime import datetime, timezone
from typing import Optional

from supabase import create_client, Client

_client: Optional[Client] = None


def get_client() -> Client:
    """Lazy-init Supabase client using service role key."""
    global _client
    if _client is None:
        url = os.getenv("SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _client = create_client(url, key)
    return _client


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def first_row(result) -> Optional[dict]:
    """First row of a .execute() result, or None."""
    rows = result.data or []
    return rows[0] if rows else None
