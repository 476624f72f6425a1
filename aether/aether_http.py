import logging
import time
from typing import Any, Dict, Optional

import httpx

from aether.aether_serialize import deserialize, serialize


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
DEFAULT_RETRIES = 2
DEFAULT_BACKOFF = 0.2


class HttpStatusError(Exception):
    """A response arrived but its status was not 2xx."""

    def __init__(self, status: int, url: str, preview: str):
        super().__init__(f"HTTP {status} for {url}: {preview}")
        self.status = status
        self.url = url


def _encode_body(data: Any) -> tuple[bytes, str]:
    if isinstance(data, str):
        return data.encode("utf-8"), "text/plain; charset=utf-8"
    return serialize(data, fmt="json", pretty=False).encode("utf-8"), "application/json"


def http_request(method: str, url: str, *, config: Optional[Dict] = None, data: Any = None) -> Any:
    """
    Core HTTP helper.

    Returns the deserialized body of a 2xx response (JSON/YAML by content
    type, otherwise text). Non-2xx responses raise HttpStatusError. Failed
    attempts are retried `retries` times with exponential backoff.
    """
    cfg = dict(config or {})
    timeout = float(cfg.pop('timeout', DEFAULT_TIMEOUT))
    retries = int(cfg.pop('retries', DEFAULT_RETRIES))
    backoff = float(cfg.pop('backoff', DEFAULT_BACKOFF))
    headers = dict(cfg.pop('headers', {}))
    params = dict(cfg.pop('params', {}))

    body = None
    if data is not None:
        body, content_type = _encode_body(data)
        headers.setdefault("Content-Type", content_type)

    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        for attempt in range(retries + 1):
            try:
                logger.debug("%s %s (attempt %d)", method.upper(), url, attempt + 1)
                resp = client.request(method.upper(), url, headers=headers, params=params, content=body)
                if 200 <= resp.status_code < 300:
                    return deserialize(resp.content, content_type=resp.headers.get("Content-Type"))
                preview = (resp.text or "")[:200]
                raise HttpStatusError(resp.status_code, url, preview)
            except (httpx.HTTPError, HttpStatusError) as e:
                if attempt < retries:
                    logger.debug("%s %s failed: %s; retrying", method.upper(), url, e)
                    time.sleep(backoff * (2 ** attempt))
                    continue
                raise


def http_get(url: str, config: Optional[Dict] = None) -> Any:
    return http_request('GET', url, config=config)


def http_post(url: str, data: Any, config: Optional[Dict] = None) -> Any:
    return http_request('POST', url, config=config, data=data)
