"""Shared slowapi limiter for the mutation routes"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import get_settings

settings = get_settings()

# No storage_uri: limits are kept in memory per process
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
DEFAULT_RATE_LIMIT = settings.rate_limit
