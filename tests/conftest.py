import os
import sys
from pathlib import Path

import pytest

# Allow `import tabgroups` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _block_real_llm_calls(monkeypatch):
    """Tests must never open a real OpenRouter connection; inject a fake client instead."""

    def _blocked(*_args, **_kwargs):
        raise AssertionError("OpenRouter client constructed during tests")

    import tabgroups.openrouter_client as openrouter_client

    monkeypatch.setattr(openrouter_client, "OpenAI", _blocked)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("TABGROUPS_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
