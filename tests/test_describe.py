from types import SimpleNamespace

import httpx
from openai import APIError

import tabgroups.describe as describe
from tabgroups.config import Settings
from tabgroups.fetch import FetchResult
from tabgroups.model import Tab, TabGroup


def _group() -> TabGroup:
    return TabGroup(
        name="Trip",
        tabs=[
            Tab("Flights", "https://flights.example/lis"),
            Tab("Router", "http://localhost:8080/"),
            Tab("Hotels", "https://hotels.example/lis"),
        ],
    )


def test_build_system_prompt_quotes_categories():
    cfg = Settings(describe_categories=["travel", "work"], describe_system_prompt="Pick one of {{categories}}.")
    assert describe.build_system_prompt(cfg) == 'Pick one of "travel", "work".'


def test_build_system_prompt_falls_back_to_fetch_prompt_when_blank():
    cfg = Settings(describe_system_prompt="  ", openrouter_system_prompt="base prompt")
    assert describe.build_system_prompt(cfg) == "base prompt"


def test_build_user_message_titles_only():
    msg = describe.build_user_message(_group())
    assert msg == (
        'Tab group: "Trip"\n'
        "\n"
        "Tabs (3 total):\n"
        "- Flights (https://flights.example/lis)\n"
        "- Router (http://localhost:8080/)\n"
        "- Hotels (https://hotels.example/lis)"
    )


def test_build_user_message_with_page_content():
    msg = describe.build_user_message(_group(), ["## Flights\ncheap", "## Hotels\nnice"])
    assert msg.endswith("\n\nPage content for selected tabs:\n\n## Flights\ncheap\n\n## Hotels\nnice")


def test_page_excerpts_skips_filtered_hosts_and_failures(monkeypatch):
    requested = []

    def fake_fetch_many(urls, **_kwargs):
        requested.extend(urls)
        return {
            "https://flights.example/lis": FetchResult(ok=True, markdown="x" * 50, fetch_ms=1),
            "https://hotels.example/lis": FetchResult(ok=False, markdown=None, fetch_ms=1, error="timeout"),
        }

    monkeypatch.setattr(describe, "fetch_many_markdown", fake_fetch_many)
    cfg = Settings(describe_per_tab_max_bytes=10)
    sections = describe.page_excerpts(_group(), cfg)
    assert requested == ["https://flights.example/lis", "https://hotels.example/lis"]
    assert sections == ["## Flights\n" + "x" * 10]


def test_page_excerpts_respects_max_tabs(monkeypatch):
    requested = []

    def fake_fetch_many(urls, **_kwargs):
        requested.extend(urls)
        return {}

    monkeypatch.setattr(describe, "fetch_many_markdown", fake_fetch_many)
    describe.page_excerpts(_group(), Settings(describe_max_tabs_to_fetch=1))
    assert requested == ["https://flights.example/lis"]


class _ScriptedCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.messages = []

    def create(self, **kwargs):
        self.messages.append(kwargs["messages"])
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


def test_describe_groups_skips_failed_group_and_parses_the_rest():
    err = APIError("upstream 502", httpx.Request("POST", "https://openrouter.test/api/v1/chat/completions"), body=None)
    completions = _ScriptedCompletions(
        [
            '```json\n{"description":"Trip planning","category":"travel","topics":["lisbon"],"intent":"book","confidence":0.9}\n```',
            err,
            "not json at all",
        ]
    )
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    groups = [_group(), TabGroup("Broken", [Tab("a", "https://a.example")]), TabGroup("Odd", [Tab("b", "https://b.example")])]

    results = describe.describe_groups(groups, Settings(), api_key="k", client=client)

    assert list(results) == ["Trip", "Odd"]
    assert results["Trip"]["category"] == "travel"
    assert results["Odd"] == {"_raw": "not json at all"}
    system, user = completions.messages[0]
    assert '"travel"' in system["content"]
    assert user["content"].startswith('Tab group: "Trip"')


def test_describe_groups_survives_reply_without_choices():
    class _Completions:
        def __init__(self):
            self.replies = [
                SimpleNamespace(choices=None),
                SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"category":"work"}'))]),
            ]

        def create(self, **_kwargs):
            return self.replies.pop(0)

    client = SimpleNamespace(chat=SimpleNamespace(completions=_Completions()))
    groups = [TabGroup("A", [Tab("a", "https://a.example")]), TabGroup("B", [Tab("b", "https://b.example")])]

    results = describe.describe_groups(groups, Settings(), api_key="k", client=client)

    assert results == {"B": {"category": "work"}}
