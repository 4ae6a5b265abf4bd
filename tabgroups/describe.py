from __future__ import annotations

from typing import Any, Dict, List, Optional

from openai import APIError

from .config import Settings
from .fetch import eligible_tabs, fetch_many_markdown
from .log import get_logger
from .model import TabGroup
from .openrouter_client import chat, parse_group_description

log = get_logger(__name__)

CATEGORIES_PLACEHOLDER = "{{categories}}"


def build_system_prompt(cfg: Settings) -> str:
    categories = ", ".join(f'"{c}"' for c in cfg.describe_categories)
    base = (cfg.describe_system_prompt or "").strip() or cfg.openrouter_system_prompt
    return base.replace(CATEGORIES_PLACEHOLDER, categories)


def build_user_message(group: TabGroup, excerpts: Optional[List[str]] = None) -> str:
    tab_lines = "\n".join(f"- {t.title} ({t.url})" for t in group.tabs)
    msg = f'Tab group: "{group.name}"\n\nTabs ({len(group.tabs)} total):\n{tab_lines}'
    if excerpts:
        msg += "\n\nPage content for selected tabs:\n\n" + "\n\n".join(excerpts)
    return msg


def page_excerpts(group: TabGroup, cfg: Settings) -> List[str]:
    """Tier 2: markdown sections for the first few fetchable tabs, in tab order."""
    eligible = eligible_tabs(group.tabs, cfg.describe_skip_domains)
    to_fetch = eligible[: max(0, cfg.describe_max_tabs_to_fetch)]
    log.info(
        "Fetching content for %d tabs of %r (skipped %d by domain filter)",
        len(to_fetch),
        group.name,
        len(group.tabs) - len(eligible),
    )
    results = fetch_many_markdown(
        [t.url for t in to_fetch],
        jobs=len(to_fetch),
        timeout_s=cfg.fetch_timeout_s,
        user_agent=cfg.fetch_user_agent,
        max_bytes=cfg.fetch_max_bytes,
    )
    sections: List[str] = []
    for tab in to_fetch:
        r = results.get(tab.url)
        if r is None or not r.ok or not r.markdown:
            log.warning("Failed to fetch %s: %s", tab.url, r.error if r else "no result")
            continue
        sections.append(f"## {tab.title}\n{r.markdown[: cfg.describe_per_tab_max_bytes]}")
    return sections


def describe_groups(
    groups: List[TabGroup],
    cfg: Settings,
    *,
    api_key: str,
    fetch_content: bool = False,
    client: Any = None,
) -> Dict[str, Dict[str, Any]]:
    """LLM description per group name. A group whose request fails is logged and left out."""
    system_prompt = build_system_prompt(cfg)
    results: Dict[str, Dict[str, Any]] = {}
    for group in groups:
        log.info("Processing: %s (%d tabs)", group.name, len(group.tabs))
        excerpts = page_excerpts(group, cfg) if fetch_content else None
        user_message = build_user_message(group, excerpts)
        log.debug("--- Assembled prompt ---\n%s\n--- End prompt ---", user_message)
        try:
            reply = chat(
                api_key=api_key,
                base_url=cfg.openrouter_base_url,
                model=cfg.openrouter_model,
                system_prompt=system_prompt,
                user_message=user_message,
                timeout_s=cfg.openrouter_timeout_s,
                max_tokens=cfg.openrouter_max_tokens,
                label=group.name,
                client=client,
            )
        except (APIError, ValueError) as e:
            log.error("LLM request failed for %r, skipping: %s", group.name, e)
            continue
        results[group.name] = parse_group_description(reply.text)
    return results
