from slowapi import Limiter
from slowapi.util import get_remote_address

# Partagé entre main.py (handler 429) et les routers publics
limiter = Limiter(key_func=get_remote_address)
