"""Supabase access for the push platform database."""

import os
from functools import lru_cache

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

URL_ENV = "SUPABASE_URL"
KEY_ENV = "SUPABASE_SERVICE_KEY"


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Shared Supabase client for the subscribers, segments, notifications and sites tables.

    Raises:
        ValueError: If the connection settings are missing
    """
    url = os.getenv(URL_ENV)
    key = os.getenv(KEY_ENV)

    missing = [name for name, value in ((URL_ENV, url), (KEY_ENV, key)) if not value]
    if missing:
        raise ValueError(f"Missing Supabase settings: {', '.join(missing)}")

    return create_client(url, key)
