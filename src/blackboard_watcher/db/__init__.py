"""Database module for Blackboard Watcher - Supabase integration."""

from blackboard_watcher.db.client import create_supabase_client, get_supabase_client
from blackboard_watcher.db.record_store import RecordStore

__all__ = ["create_supabase_client", "get_supabase_client", "RecordStore"]
