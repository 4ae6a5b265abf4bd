from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from .log import get_logger

log = get_logger(__name__)

RAINDROP_BASE_URL = "https://api.raindrop.io/rest/v1"
CACHE_FILE_NAME = "raindrop-collections.json"
# Maximum page size accepted by /raindrops/{collectionId}.
PER_PAGE = 50


class RaindropAPIError(RuntimeError):
    def __init__(self, path: str, status_code: int, body: str):
        super().__init__(f"Raindrop API {status_code} for {path}: {body}")
        self.path = path
        self.status_code = status_code
        self.body = body


@dataclass
class RaindropSnapshot:
    fetched_at: str
    collections: List[Dict[str, Any]] = field(default_factory=list)
    raindrops: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"fetchedAt": self.fetched_at, "collections": self.collections, "raindrops": self.raindrops}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RaindropSnapshot":
        if not isinstance(data, dict):
            raise ValueError("Raindrop cache must be a JSON object")
        return RaindropSnapshot(
            fetched_at=str(data.get("fetchedAt") or ""),
            collections=list(data.get("collections") or []),
            raindrops=list(data.get("raindrops") or []),
        )


class RaindropClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = RAINDROP_BASE_URL,
        timeout_s: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout_s, connect=timeout_s),
            transport=transport,
        )

    async def __aenter__(self) -> "RaindropClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        log.debug("GET %s %s", path, params or "")
        r = await self._client.get(path, params=params)
        if r.status_code < 200 or r.status_code >= 300:
            raise RaindropAPIError(path, r.status_code, r.text)
        data = r.json()
        if not isinstance(data, dict):
            raise RaindropAPIError(path, r.status_code, "response body is not a JSON object")
        return data

    async def root_collections(self) -> List[Dict[str, Any]]:
        return _items(await self.get_json("/collections"))

    async def child_collections(self) -> List[Dict[str, Any]]:
        return _items(await self.get_json("/collections/childrens"))

    async def all_raindrops(self) -> List[Dict[str, Any]]:
        """Every raindrop across all collections, page by page.

        Exhaustion is signalled by a page shorter than PER_PAGE; there is no total-count check.
        """
        out: List[Dict[str, Any]] = []
        page = 0
        while True:
            items = _items(await self.get_json("/raindrops/0", params={"perpage": PER_PAGE, "page": page}))
            out.extend(items)
            log.debug("Fetched page %d: %d raindrop(s)", page, len(items))
            if len(items) < PER_PAGE:
                break
            page += 1
        return out


def _items(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    items = payload.get("items")
    if not isinstance(items, list):
        return []
    return [x for x in items if isinstance(x, dict)]


async def fetch_all(
    api_key: str,
    *,
    base_url: str = RAINDROP_BASE_URL,
    timeout_s: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RaindropSnapshot:
    """Root collections, child collections and all raindrops, requested concurrently.

    Any failing request aborts the whole fetch; nothing partial is returned.
    """
    async with RaindropClient(api_key, base_url=base_url, timeout_s=timeout_s, transport=transport) as client:
        tasks = [
            asyncio.ensure_future(client.root_collections()),
            asyncio.ensure_future(client.child_collections()),
            asyncio.ensure_future(client.all_raindrops()),
        ]
        try:
            roots, children, raindrops = await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    collections = roots + children
    log.debug("Collections: %d (%d root, %d child)", len(collections), len(roots), len(children))
    log.debug("Raindrops: %d", len(raindrops))
    return RaindropSnapshot(
        fetched_at=datetime.now(timezone.utc).isoformat(),
        collections=collections,
        raindrops=raindrops,
    )


def cache_file(cache_dir: Path) -> Path:
    return Path(cache_dir) / CACHE_FILE_NAME


def write_cache(cache_dir: Path, snapshot: RaindropSnapshot) -> Path:
    path = cache_file(cache_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
    log.debug("Cache written to %s", path)
    return path


def load_cache(cache_dir: Path) -> RaindropSnapshot:
    path = cache_file(cache_dir)
    if not path.exists():
        raise FileNotFoundError(f"No cached Raindrop data at {path}. Run `tabgroups sync` first.")
    snap = RaindropSnapshot.from_dict(json.loads(path.read_text(encoding="utf-8")))
    log.debug("Loaded Raindrop cache from %s", snap.fetched_at or "unknown time")
    return snap


async def sync_raindrop(
    api_key: str,
    cache_dir: Path,
    *,
    base_url: str = RAINDROP_BASE_URL,
    timeout_s: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RaindropSnapshot:
    snapshot = await fetch_all(api_key, base_url=base_url, timeout_s=timeout_s, transport=transport)
    write_cache(cache_dir, snapshot)
    return snapshot
