import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from .errors import RAGError, ValidationError

DEFAULT_FILENAME = "document.md"


@dataclass
class TextDocument:
    content: str
    filename: Optional[str] = None


def _check_filename(filename: str) -> str:
    if not filename or Path(filename).name != filename or filename in (".", ".."):
        raise ValidationError(f"Invalid document filename: {filename!r}")
    return filename


def _target_dir(temp_dir: Optional[Union[str, Path]], prefix: str) -> Path:
    try:
        if temp_dir is not None:
            path = Path(temp_dir)
            path.mkdir(parents=True, exist_ok=True)
            return path
        return Path(tempfile.mkdtemp(prefix=prefix))
    except OSError as e:
        raise RAGError(f"Failed to create directory: {e}") from e


def stage_text(text: str, filename: str = DEFAULT_FILENAME, temp_dir: Optional[Union[str, Path]] = None) -> Path:
    """Write text as a single document and return the directory holding it.

    The directory is left in place; remove it once the client is done.
    """
    if not text or not text.strip():
        raise ValidationError("Text content cannot be empty")
    filename = _check_filename(filename or DEFAULT_FILENAME)
    doc_dir = _target_dir(temp_dir, "rag_text_")
    try:
        (doc_dir / filename).write_text(text, encoding="utf-8")
    except OSError as e:
        raise RAGError(f"Failed to write file: {e}") from e
    return doc_dir


def stage_texts(documents: Sequence[TextDocument], temp_dir: Optional[Union[str, Path]] = None) -> Path:
    if not documents:
        raise ValidationError("At least one document is required")
    names = []
    for i, doc in enumerate(documents):
        if not doc.content or not doc.content.strip():
            raise ValidationError(f"Document '{doc.filename or 'unknown'}' content cannot be empty")
        names.append(_check_filename(doc.filename or f"doc_{i}.md"))

    doc_dir = _target_dir(temp_dir, "rag_texts_")
    for doc, name in zip(documents, names):
        try:
            with open(os.path.join(doc_dir, name), "w", encoding="utf-8") as fh:
                fh.write(doc.content)
        except OSError as e:
            raise RAGError(f"Failed to write file {name}: {e}") from e
    return doc_dir
