"""
External store integrations.
"""
from lernzeit.integrations.supabase_store import SupabaseStore

__all__ = ["SupabaseStore"]
