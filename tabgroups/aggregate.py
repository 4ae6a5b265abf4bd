from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .log import get_logger
from .model import Profile, TabGroup
from .normalize import normalize_local, normalize_remote
from .raindrop import load_cache
from .safari_db import cached_db_path, read_profiles

log = get_logger(__name__)

SourceReader = Callable[[], Awaitable[List[Profile]]]

SAFARI = "safari"
RAINDROP = "raindrop"


class AllSourcesFailedError(RuntimeError):
    def __init__(self, failures: List[Tuple[str, Exception]]):
        detail = "; ".join(f"{name}: {err}" for name, err in failures)
        super().__init__(f"No tab group data available - all sources failed ({detail})")
        self.failures = failures


def source_readers(cache_dir: Path, *, want_local: bool = True, want_remote: bool = True) -> Dict[str, SourceReader]:
    """Readers over the cache, local first. Neither flag set means both."""
    if not want_local and not want_remote:
        want_local = want_remote = True
    cache_dir = Path(cache_dir)

    async def _safari() -> List[Profile]:
        return normalize_local(await asyncio.to_thread(read_profiles, cached_db_path(cache_dir)))

    async def _raindrop() -> List[Profile]:
        return normalize_remote(await asyncio.to_thread(load_cache, cache_dir))

    readers: Dict[str, SourceReader] = {}
    if want_local:
        readers[SAFARI] = _safari
    if want_remote:
        readers[RAINDROP] = _raindrop
    return readers


async def aggregate(readers: Dict[str, SourceReader]) -> List[Profile]:
    """Run every reader concurrently and concatenate what succeeded, in reader order.

    A failing source contributes nothing and is logged as a warning; only when all of
    them fail is AllSourcesFailedError raised.
    """
    if not readers:
        raise ValueError("at least one source is required")
    names = list(readers)
    results = await asyncio.gather(*(readers[n]() for n in names), return_exceptions=True)

    profiles: List[Profile] = []
    failures: List[Tuple[str, Exception]] = []
    for name, res in zip(names, results):
        if isinstance(res, Exception):
            log.warning("Skipping %s: %s", name, res)
            failures.append((name, res))
            continue
        if isinstance(res, BaseException):
            raise res
        log.debug("%s: %d profile(s)", name, len(res))
        profiles.extend(res)

    if len(failures) == len(names):
        raise AllSourcesFailedError(failures)
    return profiles


async def aggregate_cached(cache_dir: Path, *, want_local: bool = True, want_remote: bool = True) -> List[Profile]:
    return await aggregate(source_readers(cache_dir, want_local=want_local, want_remote=want_remote))


def all_groups(profiles: List[Profile]) -> List[TabGroup]:
    return [g for p in profiles for g in p.tab_groups]


def find_group(profiles: List[Profile], name: str) -> Optional[TabGroup]:
    """Exact, case-sensitive name match; the first group wins when names repeat across sources."""
    for g in all_groups(profiles):
        if g.name == name:
            return g
    return None
