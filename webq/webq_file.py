from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict, Optional

from webq.webq_datatypes import PageData
from webq.webq_serialize import deserialize


def _resolve_locator(locator: str, base_dir: Optional[str] = None) -> str:
    # Accepts 'file://...' locators and plain paths
    if not locator.startswith("file://"):
        rest = locator
    else:
        rest = locator[7:]
        # file:///<abs-path>
        if rest.startswith("/"):
            return "/" + rest.lstrip("/")
    if rest.startswith("~"):
        return os.path.expanduser(rest)
    if os.path.isabs(rest):
        return os.path.normpath(rest)
    base = base_dir or os.getcwd()
    return os.path.normpath(os.path.join(base, rest))


def file_url(path: str) -> str:
    return Path(path).resolve().as_uri()


def load_page(locator: str, config: Optional[Dict[str, Any]] = None, *,
              base_dir: Optional[str] = None, url: Optional[str] = None) -> PageData:
    """Reads a local document into PageData.

    `.json`, `.yaml`/`.yml` and `.xml` files become JSON data; anything else
    is sniffed (JSON first, then HTML). `url` overrides the page URL, which
    otherwise is the file's own file:// URL.
    """
    path = _resolve_locator(locator, base_dir)
    cfg = dict(config or {})
    encoding = cfg.get("encoding") or "utf-8"
    page_url = url or file_url(path)

    with open(path, "rb") as f:
        data = f.read()

    ext = os.path.splitext(path)[1].lower()
    if ext in (".json", ".yaml", ".yml", ".xml"):
        fmt = {".json": "json", ".xml": "xml"}.get(ext, "yaml")
        value = deserialize(data, fmt=fmt)
        if not isinstance(value, str):
            return PageData(page_url, "", json_data=value)
    text = data.decode(encoding, errors="replace")
    return PageData.auto(page_url, text)
