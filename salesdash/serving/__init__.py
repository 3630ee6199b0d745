"""
Serving Module
"""
from .cache import TTLCache, RedisTTLCache, build_caches, connect_redis

__all__ = [
    "TTLCache",
    "RedisTTLCache",
    "build_caches",
    "connect_redis",
]
