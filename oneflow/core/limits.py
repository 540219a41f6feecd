from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import RATE_LIMIT_STORAGE_URI

# keyed by client address; the app stores it on app.state.limiter
limiter = Limiter(key_func=get_remote_address, storage_uri=RATE_LIMIT_STORAGE_URI)

TOO_MANY_LOGINS = "Too many login attempts, try later"
