"""
api/limiter.py -- The one slowapi Limiter of the process.

api/main.py mounts it (app.state.limiter + SlowAPIMiddleware) and
api/routes/v1/auth.py decorates the login route with it. Counters live in
this instance's memory store, so both sides must share it.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
