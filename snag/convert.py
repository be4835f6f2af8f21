from __future__ import annotations

import logging
import os
import re
import sys
from typing import IO

import html2text
from bs4 import BeautifulSoup
from markdownify import MarkdownConverter

from .browser import Page
from .cdp import CdpError
from .config import BINARY_FORMATS
from .errors import ConversionFailed, ValidationError

_LOGGER = logging.getLogger("snag.convert")

BYTES_PER_KB = 1024.0

_NOISE_TAGS = ("script", "style", "noscript", "template")


def _clean_soup(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_NOISE_TAGS):
        tag.decompose()
    return soup


def html_to_markdown(html: str) -> str:
    md = MarkdownConverter(heading_style="ATX", bullets="-").convert_soup(_clean_soup(html))
    md = re.sub(r"\n{3,}", "\n\n", md)
    return md.strip() + "\n"


def html_to_text(html: str) -> str:
    h = html2text.HTML2Text()
    h.ignore_links = True
    h.ignore_images = True
    h.ignore_emphasis = True
    h.ignore_tables = False
    h.body_width = 0
    text = h.handle(str(_clean_soup(html)))
    return re.sub(r"\n{3,}", "\n\n", text).strip() + "\n"


class ContentConverter:
    """Turn fetched content into the requested format and deliver it."""

    def __init__(self, fmt: str, stdout: IO[str] | None = None) -> None:
        self.format = fmt
        self._stdout = stdout

    @property
    def stdout(self) -> IO[str]:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def is_binary(self) -> bool:
        return self.format in BINARY_FORMATS

    def convert(self, html: str) -> str:
        if self.format == "html":
            _LOGGER.debug("Output format: HTML (passthrough)")
            return html
        try:
            if self.format == "md":
                _LOGGER.debug("Converting HTML to Markdown...")
                return html_to_markdown(html)
            if self.format == "text":
                _LOGGER.debug("Extracting plain text...")
                return html_to_text(html)
        except Exception as exc:  # noqa: BLE001
            raise ConversionFailed(f"Failed to convert HTML to {self.format}: {exc}", "Try --format html") from exc
        raise ConversionFailed(f"Unsupported text format: {self.format}", "Use one of: md, html, text")

    def process(self, html: str, output_file: str | None = None) -> None:
        content = self.convert(html)
        if output_file:
            self._write_file(output_file, content.encode("utf-8"))
            return
        self.stdout.write(content)
        self.stdout.flush()
        _LOGGER.debug("Wrote %d bytes to stdout", len(content))

    def render_page(self, page: Page) -> bytes:
        try:
            if self.format == "pdf":
                _LOGGER.debug("Generating PDF...")
                return page.pdf()
            if self.format == "png":
                _LOGGER.debug("Capturing screenshot...")
                return page.screenshot()
        except CdpError as exc:
            raise ConversionFailed(f"Failed to render {self.format.upper()}: {exc}", "Retry, or use --format html") from exc
        raise ConversionFailed(f"Unsupported binary format: {self.format}", "Use pdf or png")

    def process_page(self, page: Page, output_file: str | None = None) -> None:
        data = self.render_page(page)
        _LOGGER.debug("Rendered %d bytes of %s", len(data), self.format.upper())
        if output_file:
            self._write_file(output_file, data)
            return
        buffer = getattr(self.stdout, "buffer", None)
        if buffer is None:
            raise ConversionFailed("stdout does not accept binary data", "Use --output or --output-dir")
        buffer.write(data)
        buffer.flush()

    def _write_file(self, path: str, data: bytes) -> None:
        if os.path.exists(path):
            _LOGGER.debug("Overwriting existing file: %s", path)
        try:
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            raise ValidationError(
                f"Failed to write output file {path}: {exc.strerror or exc}",
                "Check permissions and free space, or choose another --output",
                {"path": path},
            ) from exc
        _LOGGER.info("Saved to %s (%.1f KB)", path, len(data) / BYTES_PER_KB)


__all__ = ["ContentConverter", "html_to_markdown", "html_to_text"]
