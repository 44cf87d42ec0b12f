"""BuildExecutor 单元测试：步骤序列、staging 与错误映射"""

from __future__ import annotations

from pathlib import Path

import pytest

from depforge.core.exceptions import CompileError, FetchError, InstallStepError
from depforge.core.models import INSTALL_RECORD, SOURCE_REF_KEY, Action
from depforge.services.executor import BuildExecutor, scratch_dir
from tests.conftest import FakeToolchain


class TestBuildExecutor:
    def test_fresh_clone_runs_all_steps(self, make_dep, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        staging = BuildExecutor(toolchain, jobs=3).execute(dep, Action.FRESH_CLONE)
        assert toolchain.steps("vtk") == ["fetch", "configure", "compile", "install"]
        assert staging == dep.staging_dir
        assert (dep.src_dir / "CMakeLists.txt").is_file()
        assert (dep.build_dir / "built.o").read_text() == "jobs=3\n"
        assert (staging / "lib" / "cmake" / "vtk").is_dir()
        assert not dep.install_dir.exists()

    def test_fetch_stamps_source_and_install_records_configuration(
        self, make_dep, toolchain: FakeToolchain,
    ) -> None:
        dep = make_dep("vtk", version="9.5.2", ref="v{version}")
        BuildExecutor(toolchain, jobs=1).execute(dep, Action.FRESH_CLONE)
        assert dep.source_stamp.read_text() == "v9.5.2\n"
        record = dep.staging_dir / INSTALL_RECORD
        assert record.read_text() == (dep.build_dir / "CMakeCache.txt").read_text()
        assert f"{SOURCE_REF_KEY}:STRING=v9.5.2" in record.read_text()

    def test_fetch_leaves_no_scratch(self, make_dep, toolchain: FakeToolchain, prefix: Path) -> None:
        BuildExecutor(toolchain, jobs=1).execute(make_dep("vtk"), Action.FRESH_CLONE)
        assert not [p for p in prefix.iterdir() if p.name.startswith(".vtk-fetch-")]

    def test_reuse_build_dir_skips_configure(self, make_dep, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        ex = BuildExecutor(toolchain, jobs=1)
        ex.execute(dep, Action.FRESH_CLONE)
        toolchain.calls.clear()
        ex.execute(dep, Action.REUSE_BUILD_DIR)
        assert toolchain.steps("vtk") == ["compile", "install"]

    def test_reconfigure_discards_build_tree(self, make_dep, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        ex = BuildExecutor(toolchain, jobs=1)
        ex.execute(dep, Action.FRESH_CLONE)
        (dep.build_dir / "stale.o").write_text("old")
        (dep.src_dir / "local.patch").write_text("keep")
        toolchain.calls.clear()
        ex.execute(dep, Action.RECONFIGURE)
        assert toolchain.steps("vtk") == ["configure", "compile", "install"]
        assert not (dep.build_dir / "stale.o").exists()
        assert (dep.src_dir / "local.patch").exists()

    def test_existing_source_not_refetched(self, make_dep, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        dep.src_dir.mkdir(parents=True)
        (dep.src_dir / "CMakeLists.txt").write_text("project(vtk)\n")
        BuildExecutor(toolchain, jobs=1).execute(dep, Action.FRESH_CLONE)
        assert "fetch" not in toolchain.steps("vtk")

    def test_source_with_other_ref_is_refetched(self, make_dep, toolchain: FakeToolchain) -> None:
        ex = BuildExecutor(toolchain, jobs=1)
        ex.execute(make_dep("vtk", version="9.4.0", ref="v{version}"), Action.FRESH_CLONE)
        dep = make_dep("vtk", version="9.5.2", ref="v{version}")
        (dep.src_dir / "local.patch").write_text("from 9.4.0")
        toolchain.calls.clear()
        ex.execute(dep, Action.FRESH_CLONE)
        assert toolchain.steps("vtk")[0] == "fetch"
        assert "# ref v9.5.2" in (dep.src_dir / "CMakeLists.txt").read_text()
        assert dep.source_stamp.read_text() == "v9.5.2\n"
        assert not (dep.src_dir / "local.patch").exists()

    def test_source_with_same_ref_kept(self, make_dep, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        ex = BuildExecutor(toolchain, jobs=1)
        ex.execute(dep, Action.FRESH_CLONE)
        toolchain.calls.clear()
        ex.execute(dep, Action.FRESH_CLONE)
        assert "fetch" not in toolchain.steps("vtk")

    def test_skip_is_rejected(self, make_dep, toolchain: FakeToolchain) -> None:
        with pytest.raises(ValueError):
            BuildExecutor(toolchain, jobs=1).execute(make_dep("vtk"), Action.SKIP)

    def test_leftover_staging_replaced(self, make_dep, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        dep.staging_dir.mkdir(parents=True)
        (dep.staging_dir / "garbage.txt").write_text("old")
        BuildExecutor(toolchain, jobs=1).execute(dep, Action.FRESH_CLONE)
        assert not (dep.staging_dir / "garbage.txt").exists()


class TestErrorMapping:
    def test_fetch_failure(self, make_dep, prefix: Path) -> None:
        tc = FakeToolchain(fail_at={"vtk": "fetch"})
        dep = make_dep("vtk")
        with pytest.raises(FetchError) as exc:
            BuildExecutor(tc, jobs=1).execute(dep, Action.FRESH_CLONE)
        assert exc.value.dependency == "vtk"
        assert exc.value.step == "fetch"
        assert not dep.src_dir.exists()
        assert not [p for p in prefix.iterdir() if p.name.startswith(".vtk-fetch-")]

    def test_compile_failure_has_diagnostic(self, make_dep) -> None:
        tc = FakeToolchain(fail_at={"vtk": "compile"})
        with pytest.raises(CompileError) as exc:
            BuildExecutor(tc, jobs=1).execute(make_dep("vtk"), Action.FRESH_CLONE)
        assert "simulated compile failure" in exc.value.diagnostic
        assert "vtk: compile 失败" in str(exc.value)

    def test_install_failure_keeps_staging(self, make_dep) -> None:
        tc = FakeToolchain(fail_at={"vtk": "install"})
        dep = make_dep("vtk")
        with pytest.raises(InstallStepError):
            BuildExecutor(tc, jobs=1).execute(dep, Action.FRESH_CLONE)
        assert (dep.staging_dir / "partial.txt").exists()
        assert not dep.install_dir.exists()


class TestScratchDir:
    def test_removed_on_error(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with scratch_dir(tmp_path, ".x-") as scratch:
                (scratch / "f").write_text("x")
                raise RuntimeError("boom")
        assert list(tmp_path.iterdir()) == []

    def test_removed_on_success(self, tmp_path: Path) -> None:
        with scratch_dir(tmp_path / "sub", ".x-") as scratch:
            assert scratch.parent == tmp_path / "sub"
            (scratch / "nested").mkdir()
        assert list((tmp_path / "sub").iterdir()) == []
