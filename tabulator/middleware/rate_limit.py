"""
Rate limiter shared by the app and the routes that declare limits.

Draft auto-save is the only high-frequency endpoint; it is debounced per
scorecard and additionally limited per client address.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
