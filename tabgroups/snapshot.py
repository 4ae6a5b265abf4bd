"""Point-in-time copies of a live SQLite database (plus its -wal/-shm siblings).

The source file belongs to another process and may be written at any time, so it is
never opened: it is copied into the cache directory, and every read happens against
the copy.
"""

from __future__ import annotations

import enum
import os
import shutil
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .log import get_logger

log = get_logger(__name__)

SIBLING_SUFFIXES = ("-wal", "-shm")


class SyncResult(enum.Enum):
    COPIED = "copied"
    FRESH = "fresh"


def sibling_paths(db_path: Path) -> List[Path]:
    """Main file first, then the WAL and SHM siblings (present or not)."""
    return [db_path] + [db_path.with_name(db_path.name + s) for s in SIBLING_SUFFIXES]


def newest_mtime_ns(db_path: Path) -> Optional[int]:
    """Newest mtime across the main file and whichever siblings exist; None without a main file."""
    if not db_path.exists():
        return None
    newest = db_path.stat().st_mtime_ns
    for p in sibling_paths(db_path)[1:]:
        if p.exists():
            newest = max(newest, p.stat().st_mtime_ns)
    return newest


def is_fresh(source: Path, cached: Path) -> bool:
    src_max = newest_mtime_ns(source)
    if src_max is None:
        raise FileNotFoundError(f"Source database not found: {source}")
    cache_max = newest_mtime_ns(cached)
    if cache_max is None:
        log.debug("No cached copy at %s", cached)
        return False
    log.debug("Freshness: source max mtime_ns=%d cache max mtime_ns=%d", src_max, cache_max)
    return src_max <= cache_max


def checkpoint(db_path: Path) -> None:
    """Fold pending WAL records into the main file and truncate the WAL."""
    uri = f"file:{db_path.as_posix()}?mode=rw"
    conn = sqlite3.connect(uri, uri=True)
    try:
        row = conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        log.debug("WAL checkpoint on %s: busy=%s log=%s checkpointed=%s", db_path, *(row or (None, None, None)))
    finally:
        conn.close()


def _stat_times(paths: List[Path]) -> Dict[Path, Tuple[int, int]]:
    out: Dict[Path, Tuple[int, int]] = {}
    for p in paths:
        if p.exists():
            st = p.stat()
            out[p] = (st.st_atime_ns, st.st_mtime_ns)
    return out


def _apply_times(times_by_dst: Dict[Path, Tuple[int, int]]) -> None:
    # Best-effort by contract: a cache whose times could not be restored is only
    # re-copied on the next sync, never read wrongly.
    for dst, ns in times_by_dst.items():
        try:
            if dst.exists():
                os.utime(dst, ns=ns)
        except OSError as e:
            log.debug("Could not restore timestamps on %s: %s", dst, e)


def restore_times_from(source: Path, cached: Path) -> None:
    """Stamp each cached file with its source file's atime/mtime.

    Closing the last connection usually deletes the cached -wal/-shm. When a source
    sibling is newer than the source main file, the main cached file takes the newest
    source mtime so that max(cache mtimes) still equals max(source mtimes).
    """
    pairs = list(zip(sibling_paths(source), sibling_paths(cached)))
    src_times = _stat_times([s for s, _ in pairs])
    wanted: Dict[Path, Tuple[int, int]] = {}
    for src, dst in pairs:
        if src in src_times and dst.exists():
            wanted[dst] = src_times[src]
    if src_times and cached in wanted:
        newest_src = max(ns[1] for ns in src_times.values())
        newest_kept = max(ns[1] for ns in wanted.values())
        if newest_kept < newest_src:
            atime_ns = wanted[cached][0]
            wanted[cached] = (atime_ns, newest_src)
    _apply_times(wanted)


@contextmanager
def preserved_times(db_path: Path) -> Iterator[None]:
    """Keep the cached files' own timestamps across an open/checkpoint/close cycle."""
    before = _stat_times(sibling_paths(db_path))
    try:
        yield
    finally:
        if before:
            newest = max(ns[1] for ns in before.values())
            if db_path in before:
                before[db_path] = (before[db_path][0], newest)
            _apply_times(before)


def sync_snapshot(source: Path, cache_dir: Path) -> SyncResult:
    """Refresh the cached copy of `source` inside `cache_dir` when the source changed.

    FRESH leaves every cached file untouched. COPIED replaces the main file and the
    siblings present at source, checkpoints the copy, then restores source timestamps.
    Concurrent calls on the same cache_dir are not synchronized.
    """
    source = Path(source)
    cache_dir = Path(cache_dir)
    cached = cache_dir / source.name

    log.debug("Snapshot source: %s", source)
    log.debug("Snapshot cache: %s", cached)

    if not source.is_file():
        raise FileNotFoundError(f"Source database not found: {source}")

    if is_fresh(source, cached):
        log.debug("Cache is fresh (no source files modified since last copy), skipping copy")
        return SyncResult.FRESH

    cache_dir.mkdir(parents=True, exist_ok=True)
    for src, dst in zip(sibling_paths(source), sibling_paths(cached)):
        if src.exists():
            shutil.copy2(src, dst)
            log.debug("Copied %s -> %s", src, dst)
        elif dst.exists():
            # A leftover sibling from an older copy would be replayed against the new main file.
            dst.unlink()
            log.debug("Removed stale %s", dst)

    try:
        checkpoint(cached)
    finally:
        restore_times_from(source, cached)
    return SyncResult.COPIED
