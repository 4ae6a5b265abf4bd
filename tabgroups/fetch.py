from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup  # type: ignore

from .log import get_logger
from .model import Tab

log = get_logger(__name__)

_BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "pre", "blockquote"]
_DROP_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "svg", "form", "iframe"]
_TAILNET_SUFFIX = ".ts.net"


class FetchError(RuntimeError):
    pass


@dataclass
class FetchResult:
    ok: bool
    markdown: Optional[str]
    fetch_ms: int
    error: Optional[str] = None


def fetch_markdown(
    url: str,
    *,
    timeout_s: int,
    user_agent: str,
    max_bytes: int,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """Download `url` and return its readable content as markdown-ish text."""
    timeout = httpx.Timeout(timeout_s, connect=timeout_s)
    with httpx.Client(
        follow_redirects=True,
        headers={"User-Agent": user_agent},
        timeout=timeout,
        transport=transport,
    ) as client:
        with client.stream("GET", url) as r:
            if r.status_code >= 400:
                raise FetchError(f"HTTP {r.status_code} for {url}")
            ctype = r.headers.get("content-type", "")
            encoding = r.encoding or "utf-8"
            buf = bytearray()
            # Stop at the cap; the remainder of the body is never read.
            for chunk in r.iter_bytes():
                buf.extend(chunk)
                if len(buf) >= max_bytes:
                    break
    content = bytes(buf[:max_bytes])
    if "html" not in ctype.lower() and ctype:
        return content.decode(encoding, errors="replace").strip()
    return html_to_markdown(content)


def html_to_markdown(content: bytes | str) -> str:
    if not content:
        return ""
    soup = BeautifulSoup(content, "lxml")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()

    lines: List[str] = []
    if title:
        lines.append(f"# {title}")
    body = soup.body or soup
    for el in body.find_all(_BLOCK_TAGS):
        # Nested blocks (a <p> inside an <li>) are covered by their container.
        if el.find_parent(["li", "pre", "blockquote"]) is not None:
            continue
        text = el.get_text(" ", strip=True)
        if not text:
            continue
        name = el.name or ""
        if name.startswith("h") and len(name) == 2:
            if name == "h1" and text == title:
                continue
            lines.append(f"## {text}")
        elif name == "li":
            lines.append(f"- {text}")
        elif name == "pre":
            lines.append(f"```\n{el.get_text().strip()}\n```")
        elif name == "blockquote":
            lines.append(f"> {text}")
        else:
            lines.append(text)
    return "\n\n".join(lines).strip()


def is_fetchable_host(url: str, skip_domains: Iterable[str]) -> bool:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    skip = {d.strip().lower() for d in skip_domains if d and d.strip()}
    return host not in skip and not host.endswith(_TAILNET_SUFFIX)


def eligible_tabs(tabs: Iterable[Tab], skip_domains: Iterable[str]) -> List[Tab]:
    skip = list(skip_domains)
    return [t for t in tabs if is_fetchable_host(t.url, skip)]


def fetch_many_markdown(
    urls: List[str],
    *,
    jobs: int,
    timeout_s: int,
    user_agent: str,
    max_bytes: int,
) -> Dict[str, FetchResult]:
    """Fetch many URLs concurrently; failures are reported in the result, never raised."""
    out: Dict[str, FetchResult] = {}

    def _one(url: str) -> Tuple[str, FetchResult]:
        t0 = time.time()
        try:
            md = fetch_markdown(url, timeout_s=timeout_s, user_agent=user_agent, max_bytes=max_bytes)
            ms = int((time.time() - t0) * 1000)
            return url, FetchResult(ok=True, markdown=md, fetch_ms=ms)
        except Exception as e:
            ms = int((time.time() - t0) * 1000)
            log.debug("Failed to fetch %s after %d ms: %s", url, ms, e)
            return url, FetchResult(ok=False, markdown=None, fetch_ms=ms, error=str(e))

    if not urls:
        return out
    with ThreadPoolExecutor(max_workers=max(1, min(jobs, len(urls)))) as ex:
        futs = [ex.submit(_one, u) for u in urls]
        for fut in as_completed(futs):
            url, res = fut.result()
            out[url] = res
    return out
