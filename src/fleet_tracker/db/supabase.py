"""Shared Supabase client for the load, depot and event tables."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Return the process-wide client, or None when FLEET_SUPABASE_URL/KEY are unset.

    Creating the client does not contact the server; a bad URL or key only
    shows up on the first query (see the /health/database check).
    """
    missing = [
        name
        for name, value in (("FLEET_SUPABASE_URL", settings.supabase_url), ("FLEET_SUPABASE_KEY", settings.supabase_key))
        if not value
    ]
    if missing:
        logger.warning(f"Supabase not configured, missing {', '.join(missing)}; tracking runs without a load store")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logger.error(f"Failed to create Supabase client for {settings.supabase_url}: {e}")
        return None
