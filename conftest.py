"""Pytest configuration: project root on sys.path, remote OCR disabled."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent))


@pytest.fixture(autouse=True)
def _no_remote_ocr():
    """Services built during tests never talk to a remote OCR provider."""
    with patch("claim_verifier.pipeline.build_remote_backend", return_value=None):
        yield
