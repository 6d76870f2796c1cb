"""
Global slowapi rate limiter.

Imported by the auth routers for per-endpoint limits and mounted onto
app.state in main.py so the slowapi middleware can find it.

Storage defaults to in-memory; set RATE_LIMIT_STORAGE_URI to a redis:// URL
when several instances sit behind one load balancer.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from ojtech_identity.config import Settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=Settings().rate_limit_storage_uri,
)
