import asyncio
import logging
import os
from typing import Any, Dict, NamedTuple, Optional

import httpx

from webq.webq_datatypes import PageData

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "webq/0.1 (+https://pypi.org/project/webq/)",
    "Accept": "text/html,application/json;q=0.9,*/*;q=0.8",
}


class HttpResponse(NamedTuple):
    status: int
    content: bytes
    headers: Dict[str, str]
    url: str


def default_timeout() -> float:
    try:
        return float(os.environ.get("WEBQ_HTTP_TIMEOUT", "10"))
    except ValueError:
        return 10.0


def _request_options(config: Dict[str, Any], data: Optional[str | bytes]) -> Dict[str, Any]:
    headers = {**DEFAULT_HEADERS, **dict(config.get('headers', {}))}
    body = data.encode('utf-8') if isinstance(data, str) else data
    if body is not None:
        headers.setdefault("Content-Type", "text/plain; charset=utf-8")
    return {"headers": headers, "params": dict(config.get('params', {})), "content": body}


async def http_request(method: str, url: str, *, config: Optional[Dict] = None,
                       data: Optional[str | bytes] = None) -> HttpResponse:
    """
    Sends one request, retrying transport errors and non-2xx answers with
    exponential backoff. Raises RuntimeError once retries run out on a non-2xx.

    Config keys: timeout, retries, backoff, headers, params.
    """
    cfg = dict(config or {})
    timeout = float(cfg.get('timeout', default_timeout()))
    retries = int(cfg.get('retries', 2))
    backoff = float(cfg.get('backoff', 0.2))
    options = _request_options(cfg, data)

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        for attempt in range(retries + 1):
            try:
                resp = await client.request(method.upper(), url, **options)
                if not 200 <= resp.status_code < 300:
                    raise RuntimeError(f"HTTP {resp.status_code} for {url}: {(resp.text or '')[:200]}")
            except Exception as e:
                # httpx transport errors share no base class with RuntimeError
                if attempt >= retries:
                    raise
                logger.info("retrying %s %s after error: %s", method.upper(), url, e)
                await asyncio.sleep(backoff * (2 ** attempt))
                continue
            return HttpResponse(
                status=int(resp.status_code),
                content=resp.content,
                headers={str(k).lower(): v for k, v in resp.headers.items()},
                url=str(getattr(resp, "url", "") or url),
            )
    raise RuntimeError(f"no response for {url}")


async def fetch_page(url: str, config: Optional[Dict] = None) -> PageData:
    """Downloads `url` and returns it as PageData."""
    resp = await http_request('GET', url, config=config)
    return PageData.auto(resp.url, resp.content, content_type=resp.headers.get("content-type"))


__all__ = ["HttpResponse", "http_request", "fetch_page", "default_timeout", "DEFAULT_HEADERS"]
