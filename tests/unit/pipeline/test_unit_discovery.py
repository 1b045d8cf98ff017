# tests/unit/pipeline/test_unit_discovery.py — v1
"""Tests for pipeline/discovery.py — crawling, resume and incremental runs."""

from __future__ import annotations

import pytest

from mediaindex.pipeline.checkpoints import CheckpointStore
from mediaindex.pipeline.delta import DeltaProcessor
from mediaindex.pipeline.discovery import DiscoveryCoordinator, DiscoveryState, is_excluded
from mediaindex.storage import layout

from tests.conftest import ROOT, T0

ROOT_FILE = layout.ROOT_FOLDER_NAME


def _coordinator(store, clock, excludes=None) -> DiscoveryCoordinator:
    checkpoints = CheckpointStore(store, ROOT, clock=clock)
    return DiscoveryCoordinator(
        store, checkpoints, DeltaProcessor(store, ROOT, clock=clock), ROOT, excludes=excludes, clock=clock
    )


def _paths(store, name: str) -> list[str]:
    return [d["path"] for d in store.json(layout.discovery_file_path(ROOT, name))]


class TestIsExcluded:
    @pytest.mark.parametrize(
        "path,patterns,expected",
        [
            ("/drafts", ["/drafts/*"], True),
            ("/drafts/a/b.html", ["/drafts/*"], True),
            ("/drafts-old", ["/drafts/*"], False),
            ("/blog/tmp.html", ["*.tmp.html", "/blog/tmp*"], True),
            ("/blog/post.html", [], False),
        ],
    )
    def test_patterns(self, path, patterns, expected):
        assert is_excluded(path, patterns) is expected


class TestFullDiscovery:
    @pytest.mark.asyncio
    async def test_first_run_crawls_everything(self, site, clock):
        coordinator = _coordinator(site, clock)
        plan = await coordinator.plan()
        assert plan.mode == "full"

        result = await coordinator.run(plan)

        assert result.state == DiscoveryState.COMPLETE
        assert [f.name for f in result.files] == [ROOT_FILE, "blog", "drafts"]
        assert result.total_documents == 5
        assert _paths(site, ROOT_FILE) == [f"{ROOT}/about.html", f"{ROOT}/index.html"]
        assert _paths(site, "blog") == [f"{ROOT}/blog/2024/post-2.html", f"{ROOT}/blog/post-1.html"]
        doc = site.json(layout.discovery_file_path(ROOT, "blog"))[0]
        assert doc["scanStatus"] == "pending"
        assert doc["lastModified"] == T0
        checkpoint = site.json(layout.checkpoint_path(ROOT, "discovery"))
        assert checkpoint["status"] == "completed"
        assert checkpoint["completedFolders"] == checkpoint["totalFolders"] == 3

    @pytest.mark.asyncio
    async def test_repeat_full_run_is_byte_identical(self, site, clock):
        coordinator = _coordinator(site, clock)
        await coordinator.run(await coordinator.plan())
        first = {n: site.blobs[layout.discovery_file_path(ROOT, n)] for n in (ROOT_FILE, "blog", "drafts")}

        clock.advance(60_000)
        await coordinator.run(await coordinator.plan(force=True))
        second = {n: site.blobs[layout.discovery_file_path(ROOT, n)] for n in (ROOT_FILE, "blog", "drafts")}
        assert first == second

    @pytest.mark.asyncio
    async def test_exclusions(self, site, clock):
        coordinator = _coordinator(site, clock, excludes=["/drafts/*"])
        result = await coordinator.run(await coordinator.plan())
        assert [f.name for f in result.files] == [ROOT_FILE, "blog"]
        assert layout.discovery_file_path(ROOT, "drafts") not in site.blobs

    @pytest.mark.asyncio
    async def test_folder_named_root_keeps_root_pages(self, site, clock):
        site.add_page(f"{ROOT}/root/page.html")
        coordinator = _coordinator(site, clock)

        result = await coordinator.run(await coordinator.plan())

        assert result.total_documents == 6
        assert _paths(site, ROOT_FILE) == [f"{ROOT}/about.html", f"{ROOT}/index.html"]
        assert _paths(site, "root") == [f"{ROOT}/root/page.html"]

    @pytest.mark.asyncio
    async def test_vanished_folder_file_removed(self, site, clock):
        coordinator = _coordinator(site, clock)
        await coordinator.run(await coordinator.plan())
        site.blobs.pop(f"{ROOT}/drafts/wip.html")
        await coordinator.run(await coordinator.plan(force=True))
        assert layout.discovery_file_path(ROOT, "drafts") not in site.blobs

    @pytest.mark.asyncio
    async def test_existing_files_skip_discovery(self, site, clock):
        coordinator = _coordinator(site, clock)
        await coordinator.run(await coordinator.plan())
        plan = await coordinator.plan()
        assert plan.mode == "skip"
        result = await coordinator.run(plan)
        assert result.skipped
        assert result.total_documents == 5

    @pytest.mark.asyncio
    async def test_malformed_file_forces_full(self, site, clock):
        coordinator = _coordinator(site, clock)
        await coordinator.run(await coordinator.plan())
        site.blobs[layout.discovery_file_path(ROOT, "blog")] = "[{broken"
        plan = await coordinator.plan(discovery_type="incremental")
        assert plan.mode == "full"
        await coordinator.run(plan)
        assert len(_paths(site, "blog")) == 2


class TestResume:
    @pytest.mark.asyncio
    async def test_interrupted_crawl_resumes_at_next_folder(self, site, clock):
        coordinator = _coordinator(site, clock)
        original_list = site.list

        async def list_and_stop(path):
            if path == f"{ROOT}/blog":
                coordinator.stop()
            return await original_list(path)

        site.list = list_and_stop
        result = await coordinator.run(await coordinator.plan())
        site.list = original_list

        assert result.state == DiscoveryState.INTERRUPTED
        checkpoint = site.json(layout.checkpoint_path(ROOT, "discovery"))
        assert checkpoint["status"] == "interrupted"
        assert checkpoint["folderStatus"] == {ROOT_FILE: "completed", "blog": "completed"}
        assert layout.discovery_file_path(ROOT, "drafts") not in site.blobs

        plan = await coordinator.plan()
        assert plan.mode == "resume"
        site.writes.clear()
        coordinator.reset()
        result = await coordinator.run(plan)

        assert result.state == DiscoveryState.COMPLETE
        assert result.total_documents == 5
        rewritten = [p for p in site.writes if p.startswith(layout.pages_dir(ROOT))]
        assert rewritten == [layout.discovery_file_path(ROOT, "drafts")]

    @pytest.mark.asyncio
    async def test_stop_before_run_crawls_nothing(self, site, clock):
        coordinator = _coordinator(site, clock)
        coordinator.stop()

        result = await coordinator.run(await coordinator.plan())

        assert result.state == DiscoveryState.INTERRUPTED
        assert result.files == []
        assert not any(p.startswith(layout.pages_dir(ROOT)) for p in site.blobs)


class TestIncremental:
    @pytest.mark.asyncio
    async def test_only_affected_folders_rewritten(self, site, clock):
        coordinator = _coordinator(site, clock)
        await coordinator.run(await coordinator.plan())

        root_file = next(f for f in (await coordinator.load_discovery_files())[0] if f.name == ROOT_FILE)
        index = next(d for d in root_file.documents if d.path.endswith("index.html"))
        index.scan_status = "completed"
        index.entry_status = "completed"
        await coordinator.save_discovery_file(root_file)

        site.add_page(f"{ROOT}/blog/post-3.html", last_modified=T0 + 5)
        site.blobs.pop(f"{ROOT}/blog/post-1.html")
        site.mtimes[f"{ROOT}/about.html"] = T0 + 9
        site.writes.clear()
        clock.advance(1000)

        plan = await coordinator.plan(discovery_type="incremental")
        assert plan.mode == "incremental"
        result = await coordinator.run(plan)

        assert result.affected_folders == [ROOT_FILE, "blog"]
        assert layout.discovery_file_path(ROOT, "drafts") not in site.writes
        blog = {d["path"]: d for d in site.json(layout.discovery_file_path(ROOT, "blog"))}
        assert blog[f"{ROOT}/blog/post-1.html"]["entryStatus"] == "deleted"
        assert blog[f"{ROOT}/blog/post-1.html"]["deletedAt"] == T0 + 1000
        assert blog[f"{ROOT}/blog/post-3.html"]["scanStatus"] == "pending"
        root = {d["path"]: d for d in site.json(layout.discovery_file_path(ROOT, ROOT_FILE))}
        assert root[f"{ROOT}/index.html"]["scanStatus"] == "completed"
        assert root[f"{ROOT}/about.html"]["lastModified"] == T0 + 9
        assert result.total_documents == 5

    @pytest.mark.asyncio
    async def test_unchanged_tree_touches_nothing(self, site, clock):
        coordinator = _coordinator(site, clock)
        await coordinator.run(await coordinator.plan())
        site.writes.clear()
        result = await coordinator.run(await coordinator.plan(discovery_type="incremental"))
        assert result.affected_folders == []
        assert not [p for p in site.writes if p.startswith(layout.pages_dir(ROOT))]
