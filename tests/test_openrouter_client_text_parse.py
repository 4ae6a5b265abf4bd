from types import SimpleNamespace

import pytest

from tabgroups.openrouter_client import chat, parse_group_description, strip_code_fence


def test_parse_group_description_from_plain_json():
    raw = '{"description":"Python web docs","category":"learning","topics":["django"],"intent":"build a site","confidence":0.8}'
    parsed = parse_group_description(raw)
    assert parsed["category"] == "learning"
    assert parsed["topics"] == ["django"]
    assert parsed["confidence"] == 0.8


def test_parse_group_description_from_fenced_json():
    raw = """```json
{"description":"Trip planning","category":"travel","topics":["lisbon"],"intent":"book a trip","confidence":0.6}
```"""
    parsed = parse_group_description(raw)
    assert parsed["description"] == "Trip planning"


def test_parse_group_description_keeps_extra_keys():
    parsed = parse_group_description('{"description":"x","category":"other","language":"en"}')
    assert parsed["language"] == "en"


def test_parse_group_description_falls_back_to_raw():
    assert parse_group_description("Sorry, I cannot help with that.") == {"_raw": "Sorry, I cannot help with that."}
    assert parse_group_description('["a", "b"]') == {"_raw": '["a", "b"]'}


def test_parse_group_description_keeps_valid_json_unchanged():
    raw = '{"description":"x","category":"work","topics":"a, b","intent":"i","confidence":85}'
    assert parse_group_description(raw) == {
        "description": "x",
        "category": "work",
        "topics": "a, b",
        "intent": "i",
        "confidence": 85,
    }
    assert parse_group_description('{"description":"x"}') == {"description": "x"}
    assert parse_group_description('{"confidence": 7}') == {"confidence": 7}


def test_strip_code_fence_plain_fence():
    assert strip_code_fence("```\n{}\n```") == "{}"
    assert strip_code_fence("{}") == "{}"


class _FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.content is None:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _fake_client(content):
    completions = _FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _chat(client, **overrides):
    kwargs = dict(
        api_key="k",
        base_url="https://openrouter.test/api/v1",
        model="m",
        system_prompt="sys",
        user_message="hi",
        timeout_s=5,
        client=client,
    )
    kwargs.update(overrides)
    return chat(**kwargs)


def test_chat_sends_system_and_user_messages():
    client, completions = _fake_client("  hello  ")
    res = _chat(client)
    assert res.text == "hello"
    [call] = completions.calls
    assert call["model"] == "m"
    assert [m["role"] for m in call["messages"]] == ["system", "user"]
    assert "max_tokens" not in call


def test_chat_passes_max_tokens_when_set():
    client, completions = _fake_client("ok")
    _chat(client, max_tokens=256)
    assert completions.calls[0]["max_tokens"] == 256


def test_chat_without_choices_raises():
    client, _ = _fake_client(None)
    with pytest.raises(ValueError):
        _chat(client)
