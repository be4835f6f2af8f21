"""Fetch rendered web content through a Chromium browser over CDP."""

__version__ = "0.1.0"
