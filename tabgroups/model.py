from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Tuple

UNTITLED = "(untitled)"


@dataclass
class Tab:
    title: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "url": self.url}


@dataclass
class TabGroup:
    name: str
    tabs: List[Tab] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tabs": [t.to_dict() for t in self.tabs]}


@dataclass
class Profile:
    name: str
    tab_groups: List[TabGroup] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tabGroups": [g.to_dict() for g in self.tab_groups]}


def profiles_document(profiles: Iterable[Profile]) -> Dict[str, Any]:
    """The shared JSON shape: {"profiles": [{"name", "tabGroups": [{"name", "tabs"}]}]}."""
    return {"profiles": [p.to_dict() for p in profiles]}


def iter_tabs(profiles: Iterable[Profile]) -> Iterator[Tuple[Profile, TabGroup, Tab]]:
    for profile in profiles:
        for group in profile.tab_groups:
            for tab in group.tabs:
                yield profile, group, tab


def render_tab_lines(profiles: Iterable[Profile]) -> List[str]:
    return [f"{p.name} / {g.name} / {t.title} ({t.url})" for p, g, t in iter_tabs(profiles)]


def render_group_summary(profiles: Iterable[Profile]) -> List[str]:
    lines: List[str] = []
    for profile in profiles:
        lines.append(profile.name)
        for group in profile.tab_groups:
            lines.append(f"  {group.name} ({len(group.tabs)} tabs)")
        lines.append("")
    return lines


def keep_tab(title: str | None, url: str | None) -> bool:
    return bool((title or "").strip()) and bool((url or "").strip())
