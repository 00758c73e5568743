"""Rate limiting shared by every router; limits are set per endpoint."""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
