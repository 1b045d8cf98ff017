# tests/unit/storage/test_unit_layout.py — v1
"""Tests for storage/layout.py — metadata path functions."""

from __future__ import annotations

import pytest

from mediaindex.core.errors import StorageConfigurationError
from mediaindex.storage.layout import (
    audit_log_path,
    baseline_path,
    checkpoint_path,
    discovery_file_path,
    folder_name_for,
    lock_path,
    media_index_path,
    relative_to_root,
    session_path,
    site_structure_path,
    tree_root,
)

ROOT = "/acme/site"


class TestTreeRoot:
    def test_root(self):
        assert tree_root("acme", "site") == ROOT

    @pytest.mark.parametrize("org,repo", [("", "site"), ("acme", "")])
    def test_missing_context(self, org, repo):
        with pytest.raises(StorageConfigurationError):
            tree_root(org, repo)


class TestPaths:
    def test_metadata_paths(self):
        assert discovery_file_path(ROOT, "blog") == "/acme/site/.media/.pages/blog.json"
        assert checkpoint_path(ROOT, "scanning") == "/acme/site/.media/.processing/scanning-checkpoint.json"
        assert session_path(ROOT, "s1") == "/acme/site/.media/.sessions/session-s1.json"
        assert lock_path(ROOT) == "/acme/site/.media/.sessions/scan-lock.json"
        assert media_index_path(ROOT) == "/acme/site/.media/media.json"
        assert site_structure_path(ROOT) == "/acme/site/.media/site-structure.json"
        assert baseline_path(ROOT) == "/acme/site/.media/structure-baseline.json"
        assert audit_log_path(ROOT) == "/acme/site/.media/discovery-audit-log.json"

    def test_unknown_checkpoint_kind(self):
        with pytest.raises(ValueError):
            checkpoint_path(ROOT, "indexing")


class TestNames:
    def test_folder_name(self):
        assert folder_name_for("/acme/site/blog/") == "blog"
        assert folder_name_for("/") == ".root"

    def test_relative_to_root(self):
        assert relative_to_root(ROOT, "/acme/site/blog/a.html") == "/blog/a.html"
        assert relative_to_root(ROOT, ROOT) == "/"
        assert relative_to_root(ROOT, "/other/x.html") == "/other/x.html"
