# src/storage/layout.py — v1
"""Remote storage layout for the content tree's hidden metadata area.

Every persisted record lives under ``/{org}/{repo}/.media/``:

    .media/
        .pages/<folder>.json            discovery files
        .processing/<kind>-checkpoint.json
        .sessions/session-<id>.json
        .sessions/scan-lock.json
        media.json                      deduplicated media index
        site-structure.json
        structure-baseline.json
        discovery-audit-log.json
"""

from __future__ import annotations

from mediaindex.core.errors import StorageConfigurationError

MEDIA_DIR = ".media"
PAGES_DIR = ".pages"
PROCESSING_DIR = ".processing"
SESSIONS_DIR = ".sessions"

# Hidden, so no crawled top-level folder can share it.
ROOT_FOLDER_NAME = ".root"
CHECKPOINT_KINDS = ("discovery", "scanning", "upload")


def tree_root(org: str, repo: str) -> str:
    """Return ``/{org}/{repo}``.

    Raises:
        StorageConfigurationError: If org or repo is missing.
    """
    if not org or not repo:
        raise StorageConfigurationError(
            "Content org and repo are required (set CONTENT_ORG and CONTENT_REPO)"
        )
    return f"/{org}/{repo}"


def media_root(root: str) -> str:
    return f"{root}/{MEDIA_DIR}"


def pages_dir(root: str) -> str:
    return f"{media_root(root)}/{PAGES_DIR}"


def processing_dir(root: str) -> str:
    return f"{media_root(root)}/{PROCESSING_DIR}"


def sessions_dir(root: str) -> str:
    return f"{media_root(root)}/{SESSIONS_DIR}"


# --- Specific file paths ---

def discovery_file_path(root: str, folder_name: str) -> str:
    return f"{pages_dir(root)}/{folder_name}.json"


def checkpoint_path(root: str, kind: str) -> str:
    if kind not in CHECKPOINT_KINDS:
        raise ValueError(f"Unknown checkpoint kind: {kind!r}")
    return f"{processing_dir(root)}/{kind}-checkpoint.json"


def session_path(root: str, session_id: str) -> str:
    return f"{sessions_dir(root)}/session-{session_id}.json"


def lock_path(root: str) -> str:
    return f"{sessions_dir(root)}/scan-lock.json"


def media_index_path(root: str) -> str:
    return f"{media_root(root)}/media.json"


def site_structure_path(root: str) -> str:
    return f"{media_root(root)}/site-structure.json"


def baseline_path(root: str) -> str:
    return f"{media_root(root)}/structure-baseline.json"


def audit_log_path(root: str) -> str:
    return f"{media_root(root)}/discovery-audit-log.json"


def folder_name_for(path: str) -> str:
    """Discovery file name for a folder path: its last segment, ``.root`` for ``/``."""
    segment = path.rstrip("/").rsplit("/", 1)[-1]
    return segment or ROOT_FOLDER_NAME


def relative_to_root(root: str, path: str) -> str:
    """Strip the ``/{org}/{repo}`` prefix from a content path."""
    if path.startswith(root):
        return path[len(root):] or "/"
    return path
