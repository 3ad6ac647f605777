import os
import json
from typing import Optional
import redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
_redis = redis.Redis.from_url(REDIS_URL, decode_responses=True)

CHANNEL = "flag_updates"

def _cache_key(project: str, environment: str, key: str) -> str:
    return f"flag:{project}:{environment}:{key}"

def get_flag_cache(project: str, environment: str, key: str) -> Optional[dict]:
    data = _redis.get(_cache_key(project, environment, key))
    if data:
        try:
            return json.loads(data)
        except ValueError:
            return None
    return None

def set_flag_cache(project: str, environment: str, key: str, payload: dict):
    _redis.set(_cache_key(project, environment, key), json.dumps(payload))

def delete_flag_cache(project: str, environment: str, key: str):
    _redis.delete(_cache_key(project, environment, key))

def publish_update(project: str, environment: str, key: str):
    _redis.publish(CHANNEL, f"{project}:{environment}:{key}")
