from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet, Dict, List, Optional

from .log import get_logger
from .model import UNTITLED, Profile, Tab, TabGroup, keep_tab
from .snapshot import preserved_times

log = get_logger(__name__)

PERSONAL_PROFILE = "Personal"

EXCLUDED_TAB_TITLES = frozenset({"TopScopedBookmarkList", "Untitled", "Start Page"})

_COLUMNS = ("id", "parent", "type", "subtype", "title", "url", "num_children", "hidden", "order_index")


class RowKind(enum.Enum):
    ROOT_GROUP = "root_group"
    PROFILE = "profile"
    PROFILE_GROUP = "profile_group"
    TAB = "tab"
    OTHER = "other"


@dataclass(frozen=True)
class BookmarkRow:
    id: int
    parent: int
    type: int
    subtype: int
    title: str
    url: str
    num_children: int
    hidden: int
    order_index: int

    @staticmethod
    def from_sqlite(r: sqlite3.Row) -> "BookmarkRow":
        return BookmarkRow(
            id=int(r["id"]),
            parent=int(r["parent"] or 0),
            type=int(r["type"] or 0),
            subtype=int(r["subtype"] or 0),
            title=r["title"] or "",
            url=r["url"] or "",
            num_children=int(r["num_children"] or 0),
            hidden=int(r["hidden"] or 0),
            order_index=int(r["order_index"] or 0),
        )


def is_well_formed_tab(row: BookmarkRow) -> bool:
    return row.url != "" and row.title not in EXCLUDED_TAB_TITLES and keep_tab(row.title, row.url)


def classify_row(row: BookmarkRow, profile_ids: AbstractSet[int] = frozenset()) -> RowKind:
    """Resolve what a row of the flat `bookmarks` table stands for.

    There is no dedicated kind column: roles follow from attribute combinations.
    Sub-profile groups can only be recognised once the profile marker ids are known,
    and TAB only says the row is a well-formed tab; it belongs to a group only when its
    parent is one.
    """
    if row.subtype == 2 and row.title != "":
        return RowKind.PROFILE
    if row.type == 1 and row.parent == 0 and row.subtype == 0 and row.num_children > 0 and row.hidden == 0:
        return RowKind.ROOT_GROUP
    if row.parent in profile_ids and row.subtype == 0 and row.num_children > 0:
        return RowKind.PROFILE_GROUP
    if is_well_formed_tab(row):
        return RowKind.TAB
    return RowKind.OTHER


def build_profiles(rows: List[BookmarkRow]) -> List[Profile]:
    """Assemble Personal + one profile per marker row.

    Groups are ordered by id descending (newest first), tabs by order_index ascending.
    Groups with no surviving tab are dropped; num_children counts every child row.
    """
    markers = [r for r in rows if classify_row(r) is RowKind.PROFILE]
    profile_ids = {m.id for m in markers}

    groups_by_parent: Dict[int, List[BookmarkRow]] = {}
    candidates: List[BookmarkRow] = []
    for r in rows:
        kind = classify_row(r, profile_ids)
        if kind is RowKind.ROOT_GROUP:
            groups_by_parent.setdefault(0, []).append(r)
        elif kind is RowKind.PROFILE_GROUP:
            groups_by_parent.setdefault(r.parent, []).append(r)
        if is_well_formed_tab(r):
            # Any well-formed row under a group is one of its tabs, whatever else it is.
            candidates.append(r)

    tabs_by_group: Dict[int, List[BookmarkRow]] = {}
    for r in candidates:
        tabs_by_group.setdefault(r.parent, []).append(r)

    def _groups(parent_id: int) -> List[TabGroup]:
        out: List[TabGroup] = []
        for g in sorted(groups_by_parent.get(parent_id, []), key=lambda x: x.id, reverse=True):
            tabs = [
                Tab(title=t.title, url=t.url)
                for t in sorted(tabs_by_group.get(g.id, []), key=lambda x: (x.order_index, x.id))
            ]
            if not tabs:
                log.debug("Dropping group %d (%r): no tabs survived filtering", g.id, g.title)
                continue
            out.append(TabGroup(name=g.title or UNTITLED, tabs=tabs))
        return out

    personal = Profile(name=PERSONAL_PROFILE, tab_groups=_groups(0))
    log.debug("Personal profile: %d tab group(s)", len(personal.tab_groups))
    profiles = [personal]
    for m in markers:
        p = Profile(name=m.title, tab_groups=_groups(m.id))
        log.debug("Profile %r: %d tab group(s)", p.name, len(p.tab_groups))
        profiles.append(p)
    return profiles


class SafariTabsDB:
    """Handle on a cached SafariTabs.db copy. Never point this at the live file."""

    def __init__(self, db_path: Path | str, *, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = max(0, int(busy_timeout_ms))
        self.conn: sqlite3.Connection | None = None

    def __enter__(self) -> "SafariTabsDB":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        if not self.db_path.is_file():
            raise FileNotFoundError(f"No cached Safari database at {self.db_path}. Run `tabgroups sync` first.")
        # rw (not rwc): a missing cache must fail instead of creating an empty database.
        uri = f"file:{self.db_path.as_posix()}?mode=rw"
        timeout_s = max(0.1, self.busy_timeout_ms / 1000.0)
        self.conn = sqlite3.connect(uri, uri=True, timeout=timeout_s)
        self.conn.row_factory = sqlite3.Row
        try:
            self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            log.debug("WAL checkpoint completed on %s", self.db_path)
            self._require_columns("bookmarks", _COLUMNS)
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            log.debug("Database closed: %s", self.db_path)

    def read_rows(self) -> List[BookmarkRow]:
        rows = self._cursor().execute(f"SELECT {', '.join(_COLUMNS)} FROM bookmarks ORDER BY id").fetchall()
        return [BookmarkRow.from_sqlite(r) for r in rows]

    def read_profiles(self) -> List[Profile]:
        return build_profiles(self.read_rows())

    def _cursor(self) -> sqlite3.Cursor:
        if self.conn is None:
            raise RuntimeError("database is not open")
        return self.conn.cursor()

    def _require_columns(self, table_name: str, columns: tuple[str, ...]) -> None:
        rows = self._cursor().execute(f"PRAGMA table_info({table_name})").fetchall()
        have = {str(r[1]) for r in rows}
        if not have:
            raise sqlite3.DatabaseError(f"table {table_name!r} not found in {self.db_path}")
        missing = [c for c in columns if c not in have]
        if missing:
            raise sqlite3.DatabaseError(f"table {table_name!r} is missing columns: {', '.join(missing)}")


def read_profiles(cache_path: Path, *, busy_timeout_ms: int = 5000) -> List[Profile]:
    """Reconstruct profile -> tab group -> tab from a cached snapshot."""
    cache_path = Path(cache_path)
    log.debug("Reading cached Safari database: %s", cache_path)
    with preserved_times(cache_path):
        with SafariTabsDB(cache_path, busy_timeout_ms=busy_timeout_ms) as db:
            return db.read_profiles()


def cached_db_path(cache_dir: Path, source: Optional[Path] = None) -> Path:
    return Path(cache_dir) / (source.name if source is not None else "SafariTabs.db")
