from __future__ import annotations

from typing import Any, Dict, List, Optional

from .log import get_logger
from .model import UNTITLED, Profile, Tab, TabGroup
from .raindrop import RaindropSnapshot

log = get_logger(__name__)

RAINDROP_PROFILE = "Raindrop.io"
PATH_SEPARATOR = " / "


def normalize_local(profiles: List[Profile]) -> List[Profile]:
    """Safari profiles already have the shared shape."""
    return profiles


def _ref_id(ref: Any) -> Optional[int]:
    # The API nests references as {"$id": n}; plain {"id": n} is accepted too.
    if not isinstance(ref, dict):
        return None
    value = ref.get("$id", ref.get("id"))
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _own_id(obj: Dict[str, Any]) -> Optional[int]:
    value = obj.get("_id", obj.get("id"))
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def collection_display_name(collection: Dict[str, Any], title_by_id: Dict[int, str]) -> str:
    """`Parent / Child` for nested collections; only one parent level is resolved."""
    title = str(collection.get("title") or "")
    parent_id = _ref_id(collection.get("parent"))
    if parent_id is not None:
        parent_title = title_by_id.get(parent_id)
        if parent_title:
            return f"{parent_title}{PATH_SEPARATOR}{title}"
    return title


def normalize_remote(snapshot: RaindropSnapshot) -> List[Profile]:
    """One "Raindrop.io" profile; collections keep their fetched order (roots, then children)."""
    title_by_id: Dict[int, str] = {}
    for c in snapshot.collections:
        cid = _own_id(c)
        if cid is not None:
            title_by_id[cid] = str(c.get("title") or "")

    raindrops_by_collection: Dict[int, List[Dict[str, Any]]] = {}
    for r in snapshot.raindrops:
        cid = _ref_id(r.get("collection"))
        if cid is None:
            continue
        raindrops_by_collection.setdefault(cid, []).append(r)

    groups: List[TabGroup] = []
    for c in snapshot.collections:
        cid = _own_id(c)
        items = raindrops_by_collection.get(cid, []) if cid is not None else []
        tabs: List[Tab] = []
        for r in items:
            link = str(r.get("link") or "")
            if not link:
                continue
            tabs.append(Tab(title=str(r.get("title") or UNTITLED), url=link))
        if not tabs:
            continue
        groups.append(TabGroup(name=collection_display_name(c, title_by_id), tabs=tabs))

    log.debug("Raindrop.io: %d tab group(s) from %d collection(s)", len(groups), len(snapshot.collections))
    return [Profile(name=RAINDROP_PROFILE, tab_groups=groups)]
