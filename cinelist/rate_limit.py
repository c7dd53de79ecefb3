from slowapi import Limiter
from slowapi.util import get_remote_address

CATALOG_RATE_LIMIT = "60/minute"
AUTH_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address)
