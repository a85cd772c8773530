import io
import json

import pytest

from ragclient.cli import build_parser, main


@pytest.fixture
def echo_binary(make_binary):
    return make_binary("""
        import json, sys
        if "--version" in sys.argv:
            print("auto-coder.rag 1.0"); sys.exit(0)
        if "--help" in sys.argv:
            sys.exit(0)
        q = sys.stdin.read()
        fmt = sys.argv[sys.argv.index("--output_format") + 1]
        if fmt == "stream-json":
            for word in q.split():
                print(json.dumps({"event_type": "content", "data": {"content": word}}), flush=True)
            print(json.dumps({"event_type": "end", "data": {"metadata": {"words": len(q.split())}}}))
        else:
            for word in q.split():
                print(word.upper())
    """)


class TestQueryCommand:
    def test_plain_answer(self, echo_binary, doc_dir, capsys):
        code = main(["query", "hello world", "--doc-dir", str(doc_dir), "--command", echo_binary])
        assert code == 0
        assert capsys.readouterr().out == "HELLO\nWORLD\n"

    def test_json_answer(self, echo_binary, doc_dir, capsys):
        code = main(["query", "hi", "--doc-dir", str(doc_dir), "--command", echo_binary, "--json"])
        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"ok": True, "action": "query", "answer": "HI"}

    def test_question_from_stdin(self, echo_binary, doc_dir, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("from stdin"))
        assert main(["query", "-", "--doc-dir", str(doc_dir), "--command", echo_binary]) == 0
        assert capsys.readouterr().out == "FROM\nSTDIN\n"

    def test_stream(self, echo_binary, doc_dir, capsys):
        assert main(["query", "a b", "--doc-dir", str(doc_dir), "--command", echo_binary, "--stream"]) == 0
        assert capsys.readouterr().out.splitlines() == ["A", "B"]

    def test_messages(self, echo_binary, doc_dir, capsys):
        assert main(["query", "a b", "--doc-dir", str(doc_dir), "--command", echo_binary, "--messages"]) == 0
        events = [json.loads(l) for l in capsys.readouterr().out.splitlines()]
        assert [e["event_type"] for e in events] == ["content", "content", "end"]
        assert events[0]["data"] == {"content": "a"}

    def test_collect(self, echo_binary, doc_dir, capsys):
        assert main(["query", "a b", "--doc-dir", str(doc_dir), "--command", echo_binary, "--collect", "--json"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["ok"] is True
        assert out["answer"] == "ab"
        assert out["metadata"] == {"words": 2}
        assert out["tokens"] == {"input": 0, "generated": 0}

    def test_execution_error_payload(self, make_binary, doc_dir, capsys):
        binary = make_binary("""
            import sys
            print("bad model")
            sys.exit(3)
        """)
        code = main(["query", "q", "--doc-dir", str(doc_dir), "--command", binary, "--json"])
        out = json.loads(capsys.readouterr().out)
        assert code == 1
        assert out["ok"] is False
        assert out["kind"] == "ExecutionError"
        assert out["exit_code"] == 3
        assert "bad model" in out["error"]

    def test_missing_doc_dir(self, tmp_path, capsys):
        code = main(["query", "q", "--doc-dir", str(tmp_path / "missing"), "--json"])
        out = json.loads(capsys.readouterr().out)
        assert code == 1
        assert out["kind"] == "ValidationError"

    def test_bad_env_pair(self, echo_binary, doc_dir, capsys):
        code = main(["query", "q", "--doc-dir", str(doc_dir), "--command", echo_binary, "--env", "NOEQUALS", "--json"])
        assert code == 1
        assert "KEY=VALUE" in json.loads(capsys.readouterr().out)["error"]


def test_count(make_binary, capsys):
    binary = make_binary("""
        import json
        print(json.dumps({"files": [{"file": "a.md", "characters": 3, "tokens": 1}], "totalCharacters": 3, "totalTokens": 1}))
    """)
    assert main(["count", "a.md", "--command", binary, "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {
        "ok": True, "action": "count",
        "files": [{"file": "a.md", "characters": 3, "tokens": 1}],
        "total_characters": 3, "total_tokens": 1,
    }


def test_version_and_check(echo_binary, doc_dir, capsys):
    assert main(["version", "--doc-dir", str(doc_dir), "--command", echo_binary, "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["version"] == "auto-coder.rag 1.0"
    assert main(["check", "--doc-dir", str(doc_dir), "--command", echo_binary, "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["available"] is True


def test_check_unavailable(tmp_path, doc_dir, capsys):
    assert main(["check", "--doc-dir", str(doc_dir), "--command", str(tmp_path / "nope"), "--json"]) == 1
    assert json.loads(capsys.readouterr().out)["available"] is False


def test_stream_modes_are_exclusive():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["query", "q", "--stream", "--collect"])
