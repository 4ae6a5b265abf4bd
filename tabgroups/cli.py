from __future__ import annotations

import argparse
import asyncio
import json
import sqlite3
import sys
import time
from pathlib import Path
from typing import Any, Awaitable, List, Optional, Tuple

import httpx
from openai import APIError

from . import __version__
from .aggregate import AllSourcesFailedError, aggregate_cached, all_groups, find_group
from .config import ConfigError, Settings, load_settings, require_api_key, resolve_cache_dir, safari_source_path
from .describe import describe_groups
from .fetch import FetchError, fetch_markdown
from .log import LogConfig, get_logger, setup_logging
from .model import Profile, profiles_document, render_group_summary, render_tab_lines
from .normalize import normalize_local, normalize_remote
from .openrouter_client import chat
from .raindrop import load_cache, sync_raindrop
from .safari_db import cached_db_path, read_profiles
from .snapshot import SyncResult, sync_snapshot

log = get_logger(__name__)

RAINDROP_KEY_HINT = "Set raindrop_api_key in the config file or the RAINDROP_TOKEN environment variable."
OPENROUTER_KEY_HINT = "Set openrouter_api_key in the config file or the OPENROUTER_API_KEY environment variable."


def main(argv: List[str] | None = None) -> int:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    common.add_argument("--cache-dir", default=None, help="Cache directory (default: $XDG_CACHE_HOME/safari-tabgroups).")
    common.add_argument("--verbose", action="store_true", help="Print debug info to stderr.")
    common.add_argument("--debug", action="store_true", help="Like --verbose, plus extra diagnostics.")
    common.add_argument("--no-color", action="store_true", help="Disable colored logging.")

    sources = argparse.ArgumentParser(add_help=False)
    sources.add_argument("--safari", action="store_true", help="Only include Safari tab groups.")
    sources.add_argument("--raindrop", action="store_true", help="Only include Raindrop.io collections.")

    p = argparse.ArgumentParser(
        prog="tabgroups",
        description="Safari tab groups and Raindrop.io collections as one normalized schema.",
    )
    p.add_argument("-V", "--version", action="version", version=f"tabgroups {__version__}")
    sub = p.add_subparsers(dest="cmd", required=True)

    sync = sub.add_parser(
        "sync",
        parents=[common, sources],
        help="Refresh cached data for Safari and/or Raindrop.io (the only command that writes the cache).",
    )
    sync.add_argument("--stp", action="store_true", help="Sync from Safari Technology Preview instead of Safari.")

    safari = sub.add_parser("safari", parents=[common], help="Tab groups from the cached Safari database.")
    safari.add_argument("--json", action="store_true", help="Output as JSON instead of plain text.")

    raindrop = sub.add_parser("raindrop", parents=[common], help="Raindrop.io collections as tab groups.")
    raindrop.add_argument("--json", action="store_true", help="Output as JSON instead of plain text.")

    lst = sub.add_parser("list", parents=[common, sources], help="List tab group names from all sources.")
    lst.add_argument("--json", action="store_true", help="Output merged JSON (profiles array).")

    desc = sub.add_parser("describe", parents=[common, sources], help="Classify and describe tab groups with an LLM.")
    desc.add_argument("group", nargs="?", help="Exact tab group name.")
    desc.add_argument("--all", action="store_true", help="Describe every tab group (output keyed by group name).")
    desc.add_argument("--fetch", action="store_true", help="Include fetched page content for a few tabs per group.")

    fetch = sub.add_parser("fetch", parents=[common], help="Fetch a URL as markdown, optionally ask the LLM about it.")
    fetch.add_argument("url", help="Page to fetch.")
    fetch.add_argument("--prompt", default=None, help="Send the fetched markdown to the LLM with this prompt.")

    args = p.parse_args(argv)
    try:
        cfg = load_settings(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if args.cache_dir:
        cfg.cache_dir = args.cache_dir
    if args.verbose or args.debug:
        cfg.log_level = "DEBUG"
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color))

    cache_dir = resolve_cache_dir(cfg)
    log.debug("Cache dir: %s", cache_dir)

    try:
        if args.cmd == "sync":
            return _cmd_sync(args, cfg, cache_dir)
        if args.cmd == "safari":
            return _cmd_safari(args, cache_dir)
        if args.cmd == "raindrop":
            return _cmd_raindrop(args, cache_dir)
        if args.cmd == "list":
            return _cmd_list(args, cache_dir)
        if args.cmd == "describe":
            return _cmd_describe(args, cfg, cache_dir)
        if args.cmd == "fetch":
            return _cmd_fetch(args, cfg)
    except ConfigError as e:
        log.error("%s", e)
        return 1
    return 2


def _wanted_sources(args) -> Tuple[bool, bool]:
    want_safari = bool(getattr(args, "safari", False))
    want_raindrop = bool(getattr(args, "raindrop", False))
    if not want_safari and not want_raindrop:
        return True, True
    return want_safari, want_raindrop


def _status(msg: str) -> None:
    print(msg, file=sys.stderr)


def _emit_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _emit_profiles(profiles: List[Profile], *, as_json: bool) -> None:
    if as_json:
        _emit_json(profiles_document(profiles))
        return
    for line in render_tab_lines(profiles):
        print(line)


def _cmd_sync(args, cfg: Settings, cache_dir: Path) -> int:
    want_safari, want_raindrop = _wanted_sources(args)
    if args.stp:
        cfg.safari_variant = "stp"
    cache_dir.mkdir(parents=True, exist_ok=True)

    async def _safari() -> None:
        source = safari_source_path(cfg)
        res = await asyncio.to_thread(sync_snapshot, source, cache_dir)
        _status("Safari: synced" if res is SyncResult.COPIED else "Safari: cache is fresh")

    async def _raindrop() -> None:
        api_key = require_api_key(cfg.raindrop_api_key, service="Raindrop", hint=RAINDROP_KEY_HINT)
        snap = await sync_raindrop(
            api_key,
            cache_dir,
            base_url=cfg.raindrop_base_url,
            timeout_s=cfg.raindrop_timeout_s,
        )
        _status(f"Raindrop: synced ({len(snap.collections)} collections, {len(snap.raindrops)} raindrops)")

    jobs: List[Tuple[str, Awaitable[None]]] = []
    if want_safari:
        jobs.append(("Safari", _safari()))
    if want_raindrop:
        jobs.append(("Raindrop", _raindrop()))

    async def _run() -> List[Any]:
        return await asyncio.gather(*(j for _, j in jobs), return_exceptions=True)

    failed = False
    for (label, _), res in zip(jobs, asyncio.run(_run())):
        if isinstance(res, BaseException):
            if not isinstance(res, Exception):
                raise res
            log.error("%s sync failed: %s", label, res)
            failed = True
    return 1 if failed else 0


def _cmd_safari(args, cache_dir: Path) -> int:
    try:
        profiles = normalize_local(read_profiles(cached_db_path(cache_dir)))
    except FileNotFoundError as e:
        log.error("%s", e)
        return 1
    except sqlite3.Error as e:
        log.error("Error querying database: %s", e)
        return 1
    _emit_profiles(profiles, as_json=args.json)
    return 0


def _cmd_raindrop(args, cache_dir: Path) -> int:
    try:
        profiles = normalize_remote(load_cache(cache_dir))
    except (OSError, ValueError) as e:
        log.error("Failed to read Raindrop cache: %s", e)
        return 1
    _emit_profiles(profiles, as_json=args.json)
    return 0


def _load_profiles(args, cache_dir: Path) -> Optional[List[Profile]]:
    want_safari, want_raindrop = _wanted_sources(args)
    try:
        return asyncio.run(aggregate_cached(cache_dir, want_local=want_safari, want_remote=want_raindrop))
    except AllSourcesFailedError as e:
        log.error("%s", e)
        return None


def _cmd_list(args, cache_dir: Path) -> int:
    profiles = _load_profiles(args, cache_dir)
    if profiles is None:
        return 1
    if args.json:
        _emit_json(profiles_document(profiles))
    else:
        for line in render_group_summary(profiles):
            print(line)
    return 0


def _cmd_describe(args, cfg: Settings, cache_dir: Path) -> int:
    if not args.group and not args.all:
        log.error("Usage: tabgroups describe <group-name> | --all [--fetch]")
        return 2
    api_key = require_api_key(cfg.openrouter_api_key, service="OpenRouter", hint=OPENROUTER_KEY_HINT)

    profiles = _load_profiles(args, cache_dir)
    if profiles is None:
        return 1
    groups = all_groups(profiles)
    if args.all:
        targets = groups
    else:
        found = find_group(profiles, args.group)
        if found is None:
            lines = [f'Tab group "{args.group}" not found. Available groups:']
            lines.extend(f"  - {g.name} ({len(g.tabs)} tabs)" for g in groups)
            _status("\n".join(lines))
            return 1
        targets = [found]

    results = describe_groups(targets, cfg, api_key=api_key, fetch_content=args.fetch)
    if args.all:
        _emit_json(results)
        return 0
    one = results.get(targets[0].name)
    if one is None:
        return 1
    _emit_json(one)
    return 0


def _cmd_fetch(args, cfg: Settings) -> int:
    try:
        markdown = fetch_markdown(
            args.url,
            timeout_s=cfg.fetch_timeout_s,
            user_agent=cfg.fetch_user_agent,
            max_bytes=cfg.fetch_max_bytes,
        )
    except (httpx.HTTPError, FetchError) as e:
        log.error("Failed to fetch and convert URL: %s", e)
        return 1

    if not args.prompt:
        print(markdown)
        return 0

    if args.debug:
        debug_file = Path(f"debug-{int(time.time() * 1000)}.md")
        debug_file.write_text(markdown, encoding="utf-8")
        log.debug("Saved markdown to %s", debug_file)

    api_key = require_api_key(cfg.openrouter_api_key, service="OpenRouter", hint=OPENROUTER_KEY_HINT)
    truncated = markdown[: cfg.openrouter_max_content_bytes]
    log.debug("Markdown: %d chars, truncated to %d", len(markdown), len(truncated))
    try:
        reply = chat(
            api_key=api_key,
            base_url=cfg.openrouter_base_url,
            model=cfg.openrouter_model,
            system_prompt=cfg.openrouter_system_prompt,
            user_message=f"{args.prompt}\n\n{truncated}",
            timeout_s=cfg.openrouter_timeout_s,
            max_tokens=cfg.openrouter_max_tokens,
            label="fetch",
        )
    except (APIError, ValueError) as e:
        log.error("LLM request failed: %s", e)
        return 1
    print(reply.text)
    return 0
