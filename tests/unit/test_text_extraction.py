"""
Unit tests for text extraction by media type.
"""

import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from irlab.exceptions import UnsupportedInputError
from irlab.text_extraction import PAGE_BREAK, TextExtractor, normalize_file_type

pytestmark = pytest.mark.unit


@pytest.fixture
def extractor():
    return TextExtractor()


class TestFileTypes:
    """Test media type normalization and support checks"""

    @pytest.mark.parametrize("raw,expected", [
        (".PDF", "pdf"),
        ("Text/Plain; charset=utf-8", "text/plain"),
        ("md", "md"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_file_type(raw) == expected

    def test_supported(self, extractor):
        for file_type in ["text/plain", ".md", "application/json", "text/xml", "text/html", "application/pdf"]:
            assert extractor.is_supported(file_type)
        assert not extractor.is_supported("application/octet-stream")

    def test_unsupported_raises(self, extractor):
        with pytest.raises(UnsupportedInputError) as exc_info:
            extractor.extract_text(b"data", "image/png")
        assert exc_info.value.details["file_type"] == "image/png"


class TestPlainText:

    def test_utf8(self, extractor):
        assert extractor.extract_text("质量 quality".encode("utf-8"), "text/plain") == "质量 quality"

    def test_latin1_fallback(self, extractor):
        assert extractor.extract_text(b"caf\xe9", "txt") == "café"

    def test_markdown_kept_verbatim(self, extractor):
        text = "# Heading\n\n| a | b |\n"
        assert extractor.extract_text(text.encode(), "text/markdown") == text


class TestStructuredFormats:
    """JSON and XML become YAML, HTML becomes Markdown"""

    def test_json_to_yaml(self, extractor):
        text = extractor.extract_text(b'{"name": "Widget", "tags": ["a", "b"]}', "application/json")
        assert text == "name: Widget\ntags:\n- a\n- b\n"

    def test_json_keeps_unicode(self, extractor):
        text = extractor.extract_text('{"标题": "质量标准"}'.encode("utf-8"), "json")
        assert "质量标准" in text

    def test_malformed_json(self, extractor):
        with pytest.raises(UnsupportedInputError):
            extractor.extract_text(b"{not json", "application/json")

    def test_xml_to_yaml(self, extractor):
        text = extractor.extract_text(b'<root><item id="1">Alpha</item></root>', "application/xml")
        assert text.startswith("root:")
        assert "Alpha" in text

    def test_malformed_xml(self, extractor):
        with pytest.raises(UnsupportedInputError):
            extractor.extract_text(b"<root><item></root>", "xml")

    def test_html_to_markdown(self, extractor):
        text = extractor.extract_text(b"<h1>Title</h1><p>Hello <b>world</b></p>", "text/html")
        assert "# Title" in text
        assert "**world**" in text


class TestPdf:
    """PDF pages are joined with a form feed separator"""

    def test_pages_joined(self, extractor, monkeypatch):
        document = MagicMock()
        document.__len__.return_value = 2
        fake_pymupdf = SimpleNamespace(open=MagicMock(return_value=document))
        fake_pymupdf4llm = SimpleNamespace(
            to_markdown=MagicMock(return_value=[{"text": "Page one"}, {"text": "Page two"}])
        )
        monkeypatch.setitem(sys.modules, "pymupdf", fake_pymupdf)
        monkeypatch.setitem(sys.modules, "pymupdf4llm", fake_pymupdf4llm)

        text = extractor.extract_text(b"%PDF-1.7", "application/pdf")

        assert text == "Page one" + PAGE_BREAK + "Page two"
        fake_pymupdf.open.assert_called_once_with(stream=b"%PDF-1.7", filetype="pdf")
        fake_pymupdf4llm.to_markdown.assert_called_once_with(document, page_chunks=True)
        document.close.assert_called_once()
