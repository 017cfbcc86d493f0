"""Unit tests for the failure quarantine and workspace layout."""

import os

import pytest

from simdeploy.core.pipeline.quarantine import prune_failure_runs, quarantine_run
from simdeploy.core.pipeline.workspace import ProjectWorkspace, new_run_id, project_slug


def _aged_dir(parent, name, mtime):
    path = parent / name
    path.mkdir(parents=True)
    (path / "build.log").write_text(name, encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return path


class TestWorkspace:
    """Test ProjectWorkspace layout."""

    def test_slug_is_stable_and_safe(self):
        first = project_slug("/Users/dev/My Cool App")
        second = project_slug("/Users/dev/My Cool App/")

        assert first.startswith("My-Cool-App-")
        assert first == project_slug("/Users/dev/My Cool App")
        assert "/" not in second

    def test_slug_differs_by_path(self):
        assert project_slug("/a/App") != project_slug("/b/App")

    def test_layout(self, tmp_path):
        workspace = ProjectWorkspace.for_project(tmp_path, "/src/Shop")

        assert workspace.base_dir.parent == tmp_path
        assert workspace.derived_data_dir.name == "derived-data"
        assert workspace.run_dir("r1") == workspace.runs_dir / "r1"
        assert workspace.failures_dir.name == "failures"

    def test_run_ids_are_unique(self):
        assert len({new_run_id() for _ in range(20)}) == 20


class TestPrune:
    """Test prune_failure_runs retention."""

    def test_keeps_most_recent(self, tmp_path):
        for index in range(5):
            _aged_dir(tmp_path, f"run-{index}", 1_000_000 + index * 10)

        removed = prune_failure_runs(tmp_path, keep=3)

        assert sorted(p.name for p in removed) == ["run-0", "run-1"]
        assert sorted(p.name for p in tmp_path.iterdir()) == ["run-2", "run-3", "run-4"]

    def test_fewer_than_keep(self, tmp_path):
        _aged_dir(tmp_path, "only", 1_000_000)

        assert prune_failure_runs(tmp_path, keep=3) == []
        assert [p.name for p in tmp_path.iterdir()] == ["only"]

    def test_keep_zero_removes_everything(self, tmp_path):
        _aged_dir(tmp_path, "a", 1_000_000)
        (tmp_path / "stray.txt").write_text("x", encoding="utf-8")

        prune_failure_runs(tmp_path, keep=0)

        assert list(tmp_path.iterdir()) == []

    def test_missing_directory(self, tmp_path):
        assert prune_failure_runs(tmp_path / "missing") == []


class TestQuarantineRun:
    """Test quarantine_run move-and-prune."""

    @pytest.mark.asyncio
    async def test_moves_run_and_prunes(self, tmp_path):
        failures = tmp_path / "failures"
        for index in range(3):
            _aged_dir(failures, f"old-{index}", 1_000_000 + index)
        run_dir = tmp_path / "runs" / "fresh"
        run_dir.mkdir(parents=True)
        (run_dir / "build.log").write_text("log", encoding="utf-8")

        location = await quarantine_run(run_dir, failures, "fresh", keep=3)

        assert location == failures / "fresh"
        assert (location / "build.log").read_text(encoding="utf-8") == "log"
        assert not run_dir.exists()
        assert sorted(p.name for p in failures.iterdir()) == ["fresh", "old-1", "old-2"]

    @pytest.mark.asyncio
    async def test_move_failure_reports_original_path(self, tmp_path):
        missing = tmp_path / "runs" / "gone"

        location = await quarantine_run(missing, tmp_path / "failures", "gone")

        assert location == missing
