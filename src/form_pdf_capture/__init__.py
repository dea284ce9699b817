"""Capture PDFs served by auto-submitting form pages through a headless Chromium."""

__version__ = "0.1.0"
