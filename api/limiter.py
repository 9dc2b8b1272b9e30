"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted via SlowAPIMiddleware) and by
api/routes/auth.py (per-route limits with @limiter.limit()).

All routes must share this one instance so they share one counter store;
separate instances would each count in isolation and never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
