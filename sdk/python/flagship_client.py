import json
import time
import threading
from typing import Any, Optional
import requests


class FlagshipAPIError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        return f"Flagship API error ({self.status_code}): {super().__str__()}"


class FlagshipClient:
    """Fetches evaluated flags and caches each response per user context.

    Evaluation happens server side; the client only reads ``enabled`` and
    ``value`` out of the returned mapping.
    """

    def __init__(self, api_url: str, project: str, environment: str, timeout: float = 2.0, cache_ttl: float = 60.0):
        self.api_url = api_url.rstrip('/')
        self.project = project
        self.environment = environment
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._cache = {}  # user context -> (response, ts)
        self._lock = threading.Lock()

    def _post(self, path: str, body: dict) -> dict:
        url = f"{self.api_url}{path}"
        r = requests.post(url, json=body, timeout=self.timeout)
        if not r.ok:
            try:
                data = r.json()
            except ValueError:
                data = None
            message = None
            if isinstance(data, dict):
                message = data.get("error") or data.get("detail")
            raise FlagshipAPIError(r.status_code, str(message or r.reason))
        return r.json()

    def get_flags(self, user: Optional[dict] = None) -> dict:
        now = time.time()
        context = user or {}
        cache_key = json.dumps(context, sort_keys=True, default=str)
        with self._lock:
            cached = self._cache.get(cache_key)
        if cached and (now - cached[1] < self.cache_ttl):
            return cached[0]
        body = {"project": self.project, "environment": self.environment, "user": context}
        data = self._post("/flags", body)
        with self._lock:
            self._cache[cache_key] = (data, now)
        return data

    def is_enabled(self, key: str, flags: dict) -> bool:
        flag = flags.get("flags", {}).get(key)
        return bool(flag and flag.get("enabled"))

    def get_value(self, key: str, flags: dict, default: Any = None) -> Any:
        flag = flags.get("flags", {}).get(key)
        if not flag or not flag.get("enabled"):
            return default
        return flag.get("value")

    def clear_cache(self):
        with self._lock:
            self._cache.clear()


def create_client(api_url: str, project: str, environment: str, **kwargs) -> FlagshipClient:
    return FlagshipClient(api_url, project, environment, **kwargs)
