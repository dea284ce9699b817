from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from form_pdf_capture import settings


@pytest.fixture(scope="session", autouse=True)
def patch_settings():
    """
    Keep local PDF copies off for the test session, whatever the environment says.
    """
    settings.settings.save_pdf_files = False
