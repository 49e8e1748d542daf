"""Unit tests for the BuildPipeline.

Tests verify:
- One compiler invocation per version group, never mixing versions
- A failing unit does not fail units of other groups
- Source errors fail the unit and units importing it, nothing else
- Tool-level failures fail the whole group
- The incremental cache skips unchanged units and honours force
- Cancellation keeps only fully committed groups
- Progress callbacks report every group
"""

import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from solbuild.build.artifacts import ArtifactStore
from solbuild.build.cache import BuildCache
from solbuild.build.models import GroupPhase
from solbuild.build.pipeline import BuildPipeline, PipelineResult
from solbuild.cancellation import CancellationToken
from solbuild.compilers.registry import CompilerProfile, CompilerRegistry
from solbuild.compilers.resolver import VersionAssignment, resolve
from solbuild.compilers.sources import SourceTree, discover_sources
from solbuild.errors import BuildFailedError

# ─── Helpers ──────────────────────────────────────────────────────────────────


class RecordingCallback:
    """Thread-safe callback that records all progress updates."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, GroupPhase, float, float, str]] = []
        self._lock = threading.Lock()

    def on_progress(self, group: str, phase: GroupPhase, progress: float, total: float, detail: str) -> None:
        with self._lock:
            self.calls.append((group, phase, progress, total, detail))

    def get_phases_for(self, group: str) -> list[GroupPhase]:
        with self._lock:
            return [c[1] for c in self.calls if c[0] == group]


REGISTRY = CompilerRegistry([CompilerProfile("0.8.0"), CompilerProfile("0.8.2")]).freeze()


def write_sources(root: Path, sources: dict[str, str]) -> None:
    for identifier, text in sources.items():
        path = root / identifier
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


def plan(root: Path) -> tuple[SourceTree, list[VersionAssignment]]:
    """Fresh source tree plus resolved assignments for everything under contracts/."""
    tree = SourceTree(root)
    return tree, resolve(discover_sources(tree, "contracts"), REGISTRY)


def make_pipeline(root: Path, backend, tree: SourceTree, **kwargs) -> BuildPipeline:
    return BuildPipeline(
        backend=backend,
        tree=tree,
        store=ArtifactStore(root / "artifacts"),
        cache=BuildCache(root / "cache"),
        max_workers=4,
        **kwargs,
    )


def run_in_thread(pipeline: BuildPipeline, assignments, token: CancellationToken) -> tuple[threading.Thread, dict]:
    holder: dict[str, PipelineResult] = {}

    def target() -> None:
        holder["result"] = pipeline.run(assignments, token=token)

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread, holder


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# ─── Grouping ─────────────────────────────────────────────────────────────────


class TestVersionGroups:
    def test_one_invocation_per_version(self, tmp_path: Path, fake_backend, sol_source) -> None:
        """Units resolving to different versions are never batched together."""
        write_sources(
            tmp_path,
            {
                "contracts/A.sol": sol_source("A", pragma="0.8.0"),
                "contracts/B.sol": sol_source("B"),
                "contracts/C.sol": sol_source("C"),
            },
        )
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, fake_backend, tree).run(assignments)

        assert result.success
        assert sorted(fake_backend.compiled_batches) == [
            ("0.8.0", ("contracts/A.sol",)),
            ("0.8.2", ("contracts/B.sol", "contracts/C.sol")),
        ]
        assert result.compiled == ["contracts/A.sol", "contracts/B.sol", "contracts/C.sol"]
        assert result.artifacts.get("contracts/A.sol").profile_version == "0.8.0"

    def test_artifacts_written_per_contract(self, tmp_path: Path, fake_backend, sol_source) -> None:
        write_sources(tmp_path, {"contracts/A.sol": sol_source("A")})
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, fake_backend, tree).run(assignments)
        assert (tmp_path / "artifacts/contracts/A.sol/A.json").is_file()

    def test_empty_build(self, tmp_path: Path, fake_backend) -> None:
        (tmp_path / "contracts").mkdir()
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, fake_backend, tree).run(assignments)
        assert result.success
        assert len(result.artifacts) == 0
        assert fake_backend.requests == []


# ─── Failure Isolation ────────────────────────────────────────────────────────


class TestFailureIsolation:
    def test_failure_in_one_group_keeps_other(self, tmp_path: Path, fake_backend, sol_source) -> None:
        """A failing 0.8.2 unit leaves the 0.8.0 unit's artifact intact."""
        write_sources(
            tmp_path,
            {
                "contracts/A.sol": sol_source("A", pragma="0.8.0"),
                "contracts/B.sol": sol_source("B", broken=True),
            },
        )
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, fake_backend, tree).run(assignments)

        assert not result.success
        assert result.failed_units == ["contracts/B.sol"]
        assert "contracts/A.sol" in result.artifacts
        assert "contracts/B.sol" not in result.artifacts
        assert result.errors[0].diagnostics[0].error_type == "ParserError"
        with pytest.raises(BuildFailedError, match="contracts/B.sol"):
            result.raise_for_errors()

    def test_failure_in_same_group_is_retried_without_it(self, tmp_path: Path, fake_backend, sol_source) -> None:
        """Healthy units sharing a batch with a broken one still compile."""
        write_sources(
            tmp_path,
            {
                "contracts/A.sol": sol_source("A"),
                "contracts/B.sol": sol_source("B", broken=True),
                "contracts/C.sol": sol_source("C"),
            },
        )
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, fake_backend, tree).run(assignments)

        assert result.failed_units == ["contracts/B.sol"]
        assert result.compiled == ["contracts/A.sol", "contracts/C.sol"]
        assert fake_backend.compiled_batches[-1] == ("0.8.2", ("contracts/A.sol", "contracts/C.sol"))

    def test_importer_of_broken_unit_fails(self, tmp_path: Path, fake_backend, sol_source) -> None:
        """A unit importing a broken unit fails with the imported unit's error."""
        write_sources(
            tmp_path,
            {
                "contracts/Lib.sol": sol_source("Lib", broken=True),
                "contracts/Main.sol": sol_source("Main", imports=("./Lib.sol",)),
                "contracts/Other.sol": sol_source("Other"),
            },
        )
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, fake_backend, tree).run(assignments)

        assert result.failed_units == ["contracts/Lib.sol", "contracts/Main.sol"]
        assert result.compiled == ["contracts/Other.sol"]
        main_error = next(e for e in result.errors if e.unit == "contracts/Main.sol")
        assert main_error.diagnostics[0].source == "contracts/Lib.sol"

    def test_all_units_fail(self, tmp_path: Path, fake_backend, sol_source) -> None:
        write_sources(
            tmp_path,
            {
                "contracts/A.sol": sol_source("A", pragma="0.8.0", broken=True),
                "contracts/B.sol": sol_source("B", broken=True),
            },
        )
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, fake_backend, tree).run(assignments)
        assert result.failed_units == ["contracts/A.sol", "contracts/B.sol"]
        assert len(result.artifacts) == 0

    def test_tool_failure_fails_whole_group(self, tmp_path: Path, backend_factory, sol_source) -> None:
        """A crashing 0.8.0 compiler fails every 0.8.0 unit and nothing else."""
        backend = backend_factory(broken_versions=("0.8.0",))
        write_sources(
            tmp_path,
            {
                "contracts/A.sol": sol_source("A", pragma="0.8.0"),
                "contracts/A2.sol": sol_source("A2", pragma="0.8.0"),
                "contracts/B.sol": sol_source("B"),
            },
        )
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, backend, tree).run(assignments)

        assert result.failed_units == ["contracts/A.sol", "contracts/A2.sol"]
        assert result.compiled == ["contracts/B.sol"]
        diagnostic = result.errors[0].diagnostics[0]
        assert diagnostic.error_type == "CompilerInvocationError"
        assert "crashed" in diagnostic.message


# ─── Incremental Cache ────────────────────────────────────────────────────────


class TestIncrementalCache:
    def test_second_run_reuses_artifacts(self, tmp_path: Path, backend_factory, sol_source) -> None:
        write_sources(tmp_path, {"contracts/A.sol": sol_source("A"), "contracts/B.sol": sol_source("B", pragma="0.8.0")})
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, backend_factory(), tree).run(assignments)

        backend = backend_factory()
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, backend, tree).run(assignments)

        assert backend.requests == []
        assert result.compiled == []
        assert result.cached == ["contracts/A.sol", "contracts/B.sol"]
        assert result.artifacts.get("contracts/A.sol").contract_names == ["A"]

    def test_force_recompiles(self, tmp_path: Path, backend_factory, sol_source) -> None:
        write_sources(tmp_path, {"contracts/A.sol": sol_source("A")})
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, backend_factory(), tree).run(assignments)

        backend = backend_factory()
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, backend, tree, force=True).run(assignments)
        assert result.compiled == ["contracts/A.sol"]
        assert len(backend.requests) == 1

    def test_changed_import_invalidates_importer(self, tmp_path: Path, backend_factory, sol_source) -> None:
        """Editing Lib recompiles Lib and Main but not the unrelated unit."""
        write_sources(
            tmp_path,
            {
                "contracts/Lib.sol": sol_source("Lib"),
                "contracts/Main.sol": sol_source("Main", imports=("./Lib.sol",)),
                "contracts/Other.sol": sol_source("Other"),
            },
        )
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, backend_factory(), tree).run(assignments)

        write_sources(tmp_path, {"contracts/Lib.sol": sol_source("Lib", body="    uint256 internal constant X = 2;")})
        backend = backend_factory()
        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, backend, tree).run(assignments)

        assert result.compiled == ["contracts/Lib.sol", "contracts/Main.sol"]
        assert result.cached == ["contracts/Other.sol"]

    def test_missing_artifact_file_forces_rebuild(self, tmp_path: Path, backend_factory, sol_source) -> None:
        write_sources(tmp_path, {"contracts/A.sol": sol_source("A")})
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, backend_factory(), tree).run(assignments)
        (tmp_path / "artifacts/contracts/A.sol/A.json").unlink()

        tree, assignments = plan(tmp_path)
        result = make_pipeline(tmp_path, backend_factory(), tree).run(assignments)
        assert result.compiled == ["contracts/A.sol"]

    def test_failed_unit_not_cached(self, tmp_path: Path, backend_factory, sol_source) -> None:
        write_sources(tmp_path, {"contracts/A.sol": sol_source("A", broken=True)})
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, backend_factory(), tree).run(assignments)
        assert BuildCache(tmp_path / "cache").entries == {}


# ─── Cancellation ─────────────────────────────────────────────────────────────


class TestCancellation:
    def test_cancel_keeps_completed_groups_only(self, tmp_path: Path, backend_factory, sol_source) -> None:
        """The fast group is committed; the slow group leaves nothing behind."""
        backend = backend_factory(delay=10.0, slow_versions=("0.8.2",))
        write_sources(
            tmp_path,
            {
                "contracts/A.sol": sol_source("A", pragma="0.8.0"),
                "contracts/B.sol": sol_source("B"),
            },
        )
        tree, assignments = plan(tmp_path)
        token = CancellationToken()
        thread, holder = run_in_thread(make_pipeline(tmp_path, backend, tree), assignments, token)

        assert wait_for(lambda: (tmp_path / "artifacts/contracts/A.sol/A.json").is_file())
        token.cancel("test cancel")
        thread.join(timeout=5.0)
        assert not thread.is_alive()

        result = holder["result"]
        assert result.cancelled
        assert not result.success
        assert result.compiled == ["contracts/A.sol"]
        assert result.pending == ["contracts/B.sol"]
        assert not (tmp_path / "artifacts/contracts/B.sol").exists()
        assert list((tmp_path / "artifacts").rglob("*.tmp")) == []

    def test_pipeline_cancel_method(self, tmp_path: Path, backend_factory, sol_source) -> None:
        backend = backend_factory(delay=10.0)
        write_sources(tmp_path, {"contracts/A.sol": sol_source("A")})
        tree, assignments = plan(tmp_path)
        pipeline = make_pipeline(tmp_path, backend, tree)
        holder: dict[str, PipelineResult] = {}
        thread = threading.Thread(target=lambda: holder.update(result=pipeline.run(assignments)), daemon=True)
        thread.start()

        assert backend.started.wait(timeout=5.0)
        pipeline.cancel()
        thread.join(timeout=5.0)
        assert holder["result"].cancelled
        assert holder["result"].pending == ["contracts/A.sol"]


# ─── Progress Callback ────────────────────────────────────────────────────────


class TestProgressCallback:
    def test_phases_per_group(self, tmp_path: Path, fake_backend, sol_source) -> None:
        write_sources(
            tmp_path,
            {
                "contracts/A.sol": sol_source("A", pragma="0.8.0"),
                "contracts/B.sol": sol_source("B", broken=True),
            },
        )
        tree, assignments = plan(tmp_path)
        callback = RecordingCallback()
        make_pipeline(tmp_path, fake_backend, tree).run(assignments, callback=callback)

        assert callback.get_phases_for("0.8.0") == [GroupPhase.WAITING, GroupPhase.COMPILING, GroupPhase.DONE]
        assert callback.get_phases_for("0.8.2") == [GroupPhase.WAITING, GroupPhase.COMPILING, GroupPhase.FAILED]

    def test_cached_group_reports_done(self, tmp_path: Path, backend_factory, sol_source) -> None:
        write_sources(tmp_path, {"contracts/A.sol": sol_source("A")})
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, backend_factory(), tree).run(assignments)

        callback = RecordingCallback()
        tree, assignments = plan(tmp_path)
        make_pipeline(tmp_path, backend_factory(), tree).run(assignments, callback=callback)
        assert callback.get_phases_for("0.8.2") == [GroupPhase.DONE]
