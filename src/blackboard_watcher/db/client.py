"""
Supabase connection for the record store.

The watcher reads every identity's credentials, so it connects with the
service role key rather than the anon key.
"""

import logging
from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from blackboard_watcher.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_supabase_client(settings: Optional[Settings] = None) -> Client:
    """
    Build a Supabase client.

    Args:
        settings: Optional settings instance, will use default if not provided

    Returns:
        Client: Client authenticated with the service role key
    """
    settings = settings or get_settings()
    logger.debug(f"Connecting to Supabase at {settings.supabase_url}")
    return create_client(
        supabase_url=settings.supabase_url,
        supabase_key=settings.supabase_service_role_key,
    )


@lru_cache()
def get_supabase_client() -> Client:
    """Process-wide client built from the default settings."""
    return create_supabase_client()
