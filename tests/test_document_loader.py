# tests/test_document_loader.py

import pytest

from manual_rag.domain.errors import IngestionValidationError
from manual_rag.infrastructure.chunker import split_pages
from manual_rag.infrastructure.document_loader import DocumentLoader, format_page_marker


@pytest.fixture
def loader() -> DocumentLoader:
    return DocumentLoader()


def test_text_file_is_returned_verbatim(loader, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("Hold GV20 for two minutes.", encoding="utf-8")
    assert loader.load_file(path) == "Hold GV20 for two minutes."


def test_markdown_keeps_page_markers(loader, tmp_path):
    path = tmp_path / "manual.md"
    path.write_text(f"{format_page_marker(1)}\nFirst.\n{format_page_marker(2)}\nSecond.", encoding="utf-8")
    assert [n for n, _ in split_pages(loader.load_file(path))] == [1, 2]


def test_unsupported_extension_rejected(loader, tmp_path):
    path = tmp_path / "table.csv"
    path.write_text("a,b")
    with pytest.raises(IngestionValidationError, match="Unsupported"):
        loader.load_file(path)


def test_missing_file_rejected(loader, tmp_path):
    with pytest.raises(IngestionValidationError, match="not found"):
        loader.load_file(tmp_path / "ghost.txt")


def test_blank_file_rejected(loader, tmp_path):
    path = tmp_path / "blank.txt"
    path.write_text("   \n")
    with pytest.raises(IngestionValidationError, match="No extractable text"):
        loader.load_file(path)


def test_corrupt_pdf_rejected(loader, tmp_path):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"not really a pdf")
    with pytest.raises(IngestionValidationError, match="Failed to extract"):
        loader.load_file(path)


def test_list_supported_files(loader, tmp_path):
    (tmp_path / "b.txt").write_text("x")
    (tmp_path / "a.pdf").write_bytes(b"")
    (tmp_path / "skip.docx").write_text("x")
    assert [p.name for p in loader.list_supported_files(str(tmp_path))] == ["a.pdf", "b.txt"]


def test_list_missing_directory_raises(loader, tmp_path):
    with pytest.raises(FileNotFoundError):
        loader.list_supported_files(str(tmp_path / "nowhere"))
