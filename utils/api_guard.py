"""
API guard: thin requests wrappers.

Every failure mode (connection error, timeout, non-2xx status, invalid JSON)
surfaces as TransportError so callers only have one thing to retry on.
"""

import requests

from config import HTTP_TIMEOUT
from src.errors import TransportError

_session = requests.Session()
_session.headers.update({"User-Agent": "seed-scanner/1.0", "Accept": "application/json"})


def _decode(r, url):
    if r.status_code != 200:
        raise TransportError(f"HTTP {r.status_code} from {url}", status_code=r.status_code, source=url)
    try:
        return r.json()
    except ValueError as e:
        raise TransportError(f"Invalid JSON from {url}: {e}", status_code=r.status_code, source=url)


def safe_get(url, params=None, headers=None, timeout=None):
    """GET and decode JSON, raising TransportError on any failure"""
    try:
        r = _session.get(url, params=params, headers=headers, timeout=timeout or HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise TransportError(f"GET {url} failed: {e}", source=url)
    return _decode(r, url)


def safe_post(url, json=None, headers=None, timeout=None):
    """POST a JSON body and decode the JSON reply"""
    try:
        r = _session.post(url, json=json, headers=headers, timeout=timeout or HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise TransportError(f"POST {url} failed: {e}", source=url)
    return _decode(r, url)
