# tests/integration/conftest.py — v1
"""Shared fixtures for integration tests.

Integration tests run the wired pipeline against the local filesystem
backend (STORE_BACKEND=local) and a real SQLite cache in a temp dir. No
network access is needed.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.conftest import ORG, REPO

FOLDERS = ("guides", "news", "products")
PAGES_PER_FOLDER = 4


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end runs against the local backend")


@pytest.fixture
def local_tree(settings) -> Path:
    """Three folders of four pages; each page references its own image and a shared logo."""
    root = settings.store_local_root / ORG / REPO
    for folder in FOLDERS:
        (root / folder).mkdir(parents=True)
        for i in range(PAGES_PER_FOLDER):
            (root / folder / f"page-{i}.html").write_text(
                f'<main><p>{folder} {i} <img src="/media/{folder}-{i}.jpg" alt="{folder} picture {i}"></p>'
                '<footer><img src="/media/logo.svg" alt="Company logo"></footer></main>',
                encoding="utf-8",
            )
    (root / "index.html").write_text('<a href="/files/brochure.pdf">Brochure</a>', encoding="utf-8")
    return root
