"""
Text extraction: turns uploaded bytes into the plain text the segmenter consumes.

Formats:
- PDF: Markdown via PyMuPDF4LLM (optional `pdf` extra), pages separated by
  a form feed so chunks can report their page number
- JSON / XML: converted to YAML (minimal syntax noise, structure preserved)
- HTML: converted to Markdown via html2text
- Text-like formats (txt, md, csv, yaml, ...): decoded as UTF-8, latin-1 fallback

Anything else raises UnsupportedInputError.
"""

import json
import logging
from xml.parsers.expat import ExpatError

import html2text
import xmltodict
import yaml

from .exceptions import UnsupportedInputError

logger = logging.getLogger(__name__)

PAGE_BREAK = "\n\n\f\n\n"

TEXT_TYPES = frozenset({
    'txt', 'text/plain',
    'md', 'markdown', 'text/markdown',
    'rst', 'text/x-rst',
    'csv', 'text/csv',
    'log', 'text/x-log',
    'yaml', 'yml', 'application/x-yaml', 'text/yaml',
    'toml', 'application/toml',
    'ini',
})
PDF_TYPES = frozenset({'pdf', 'application/pdf'})
JSON_TYPES = frozenset({'json', 'application/json'})
XML_TYPES = frozenset({'xml', 'application/xml', 'text/xml'})
HTML_TYPES = frozenset({'html', 'htm', 'text/html'})

SUPPORTED_TYPES = TEXT_TYPES | PDF_TYPES | JSON_TYPES | XML_TYPES | HTML_TYPES


def normalize_file_type(file_type: str) -> str:
    """'.PDF' -> 'pdf', 'Text/Plain; charset=utf-8' -> 'text/plain'"""
    normalized = (file_type or "").split(";")[0].strip().lower()
    return normalized[1:] if normalized.startswith(".") else normalized


def _to_yaml(data) -> str:
    return yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)


class TextExtractor:
    """Bytes + media type -> plain text"""

    def is_supported(self, file_type: str) -> bool:
        return normalize_file_type(file_type) in SUPPORTED_TYPES

    def extract_text(self, content: bytes, file_type: str) -> str:
        """
        Extract text from file content based on its type.

        Args:
            content: Raw file bytes
            file_type: Media type ("text/plain") or extension (".md", "pdf")

        Raises:
            UnsupportedInputError: unknown type or content that does not parse
        """
        kind = normalize_file_type(file_type)

        if kind in PDF_TYPES:
            return self.extract_pdf(content)
        if kind in JSON_TYPES:
            return self.extract_json(content)
        if kind in XML_TYPES:
            return self.extract_xml(content)
        if kind in HTML_TYPES:
            return self.extract_html(content)
        if kind in TEXT_TYPES:
            return self.decode(content)

        raise UnsupportedInputError(
            f"Unsupported file type: {file_type}. Supported: PDF or text-based formats (txt, md, json, csv, xml, yaml, etc.)",
            details={"file_type": file_type},
        )

    def decode(self, content: bytes) -> str:
        try:
            return content.decode('utf-8')
        except UnicodeDecodeError:
            logger.warning("UTF-8 decode failed, using latin-1")
            return content.decode('latin-1', errors='replace')

    def extract_pdf(self, content: bytes) -> str:
        import pymupdf
        import pymupdf4llm

        doc = pymupdf.open(stream=content, filetype="pdf")
        try:
            logger.debug(f"PDF has {len(doc)} pages, extracting text...")
            pages = pymupdf4llm.to_markdown(doc, page_chunks=True)
        finally:
            doc.close()

        text = PAGE_BREAK.join(page["text"] for page in pages)
        logger.debug(f"Extracted {len(text)} chars from PDF")
        return text

    def extract_json(self, content: bytes) -> str:
        try:
            data = json.loads(self.decode(content))
        except json.JSONDecodeError as e:
            raise UnsupportedInputError(f"Malformed JSON: {e}", details={"file_type": "json"})
        return _to_yaml(data)

    def extract_xml(self, content: bytes) -> str:
        try:
            data = xmltodict.parse(self.decode(content), attr_prefix='@', cdata_key='#text', force_list=False)
        except ExpatError as e:
            raise UnsupportedInputError(f"Malformed XML: {e}", details={"file_type": "xml"})
        return _to_yaml(data)

    def extract_html(self, content: bytes) -> str:
        converter = html2text.HTML2Text()
        converter.ignore_links = False
        converter.ignore_images = False
        converter.body_width = 0
        converter.single_line_break = False
        converter.ignore_emphasis = False
        return converter.handle(content.decode('utf-8', errors='replace'))
