import os
import stat
import sys
import textwrap
import pytest

from ragclient import RAGConfig


@pytest.fixture
def doc_dir(tmp_path):
    """A readable document directory with one file in it."""
    d = tmp_path / "docs"
    d.mkdir()
    (d / "readme.md").write_text("# Docs\n", encoding="utf-8")
    return d


@pytest.fixture
def make_binary(tmp_path):
    """Write an executable Python script standing in for auto-coder.rag."""
    counter = {"n": 0}

    def _make(body: str, prelude: str = "") -> str:
        counter["n"] += 1
        path = tmp_path / f"fake-rag-{counter['n']}"
        path.write_text(f"#!{sys.executable}\n" + prelude + textwrap.dedent(body), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture
def config_for(doc_dir):
    def _config(command_path: str, **overrides) -> RAGConfig:
        return RAGConfig(doc_dir=str(doc_dir), command_path=command_path).with_overrides(**overrides)

    return _config


def pytest_collection_modifyitems(config, items):
    if os.name != "nt":
        return
    skip = pytest.mark.skip(reason="fake executables rely on a POSIX shebang")
    for item in items:
        if "make_binary" in getattr(item, "fixturenames", ()):
            item.add_marker(skip)


EVENT_SCRIPT_HEADER = """
import json, sys

def emit(event_type, data=None, ts="2024-05-01T10:00:00Z"):
    print(json.dumps({"event_type": event_type, "timestamp": ts, "data": data or {}}), flush=True)

sys.stdin.read()
"""


@pytest.fixture
def event_script():
    """Prefix for fake binaries that emit stream-json events via emit()."""
    return EVENT_SCRIPT_HEADER

