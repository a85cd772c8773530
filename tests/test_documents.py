import shutil

import pytest

from ragclient import RAGClient, TextDocument, ValidationError


def test_from_text_writes_document(tmp_path):
    client = RAGClient.from_text("Some content", temp_dir=tmp_path / "stage")
    assert client.doc_dir == str(tmp_path / "stage")
    assert (tmp_path / "stage" / "document.md").read_text(encoding="utf-8") == "Some content"


def test_from_text_creates_temp_dir():
    client = RAGClient.from_text("内容", filename="notes.txt", timeout=5)
    staged = client.doc_dir
    try:
        assert "rag_text_" in staged
        assert client.config.timeout == 5
        with open(f"{staged}/notes.txt", encoding="utf-8") as fh:
            assert fh.read() == "内容"
    finally:
        shutil.rmtree(staged, ignore_errors=True)


@pytest.mark.parametrize("text", ["", "   \n\t"])
def test_from_text_rejects_blank(text, tmp_path):
    with pytest.raises(ValidationError):
        RAGClient.from_text(text, temp_dir=tmp_path / "stage")
    assert not (tmp_path / "stage").exists()


def test_from_texts_default_names(tmp_path):
    docs = [
        TextDocument("API docs", "api.md"),
        TextDocument("unnamed one"),
        TextDocument("FAQ", "faq.md"),
    ]
    client = RAGClient.from_texts(docs, temp_dir=tmp_path)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["api.md", "doc_1.md", "faq.md"]
    assert (tmp_path / "doc_1.md").read_text(encoding="utf-8") == "unnamed one"
    assert client.doc_dir == str(tmp_path)


def test_from_texts_requires_documents(tmp_path):
    with pytest.raises(ValidationError):
        RAGClient.from_texts([], temp_dir=tmp_path)


def test_from_texts_rejects_blank_document_before_writing(tmp_path):
    stage = tmp_path / "stage"
    with pytest.raises(ValidationError, match="faq.md"):
        RAGClient.from_texts([TextDocument("ok", "a.md"), TextDocument(" ", "faq.md")], temp_dir=stage)
    assert not stage.exists()


@pytest.mark.parametrize("name", ["../escape.md", "sub/dir.md", ".."])
def test_rejects_path_like_filenames(name, tmp_path):
    with pytest.raises(ValidationError):
        RAGClient.from_texts([TextDocument("x", name)], temp_dir=tmp_path)
