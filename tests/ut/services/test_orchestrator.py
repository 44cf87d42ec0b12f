"""Orchestrator 单元测试：流水线、失败隔离、状态与环境提示"""

from __future__ import annotations

import shutil
from pathlib import Path

from depforge.core.models import Action, InstallState
from tests.conftest import FakeToolchain


class TestRun:
    def test_first_run_installs(self, make_dep, make_orchestrator, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        report = make_orchestrator([dep], toolchain).run()
        assert report.success
        r = report.get("vtk")
        assert r.status == "installed"
        assert r.state == InstallState.ABSENT
        assert r.action == Action.FRESH_CLONE
        assert r.install_dir == str(dep.install_dir)
        assert not dep.staging_dir.exists()

    def test_second_run_skips(self, make_dep, make_orchestrator, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        make_orchestrator([dep], toolchain).run()
        toolchain.calls.clear()
        report = make_orchestrator([dep], toolchain).run()
        assert report.get("vtk").status == "skipped"
        assert report.get("vtk").action == Action.SKIP
        assert toolchain.calls == []

    def test_skip_list(self, make_dep, make_orchestrator, toolchain: FakeToolchain) -> None:
        deps = [make_dep("vtk"), make_dep("netgen")]
        report = make_orchestrator(deps, toolchain, skip=("netgen",)).run()
        assert report.get("netgen").status == "disabled"
        assert toolchain.steps("netgen") == []
        assert report.get("vtk").status == "installed"

    def test_failure_isolated(self, make_dep, make_orchestrator) -> None:
        tc = FakeToolchain(fail_at={"vtk": "compile"})
        deps = [make_dep("vtk"), make_dep("netgen")]
        report = make_orchestrator(deps, tc).run()
        assert not report.success
        vtk = report.get("vtk")
        assert vtk.status == "failed"
        assert vtk.step == "compile"
        assert "simulated compile failure" in vtk.diagnostic
        assert report.get("netgen").status == "installed"
        assert deps[1].install_dir.is_dir()
        assert [r.name for r in report.failed] == ["vtk"]

    def test_parallel_mode(self, make_dep, make_orchestrator) -> None:
        tc = FakeToolchain(fail_at={"netgen": "configure"})
        deps = [make_dep("vtk"), make_dep("netgen"), make_dep("occt")]
        report = make_orchestrator(deps, tc, parallel=3).run()
        assert [r.name for r in report.results] == ["vtk", "netgen", "occt"]
        assert report.get("vtk").status == "installed"
        assert report.get("occt").status == "installed"
        assert report.get("netgen").step == "configure"

    def test_verification_failure(self, make_dep, make_orchestrator, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk", install_markers=("bin/vtkpython",))
        report = make_orchestrator([dep], toolchain).run()
        r = report.get("vtk")
        assert r.status == "failed"
        assert r.step == "verify"
        assert not dep.install_dir.exists()
        assert dep.staging_dir.is_dir()


class TestStatus:
    def test_status_is_read_only(self, make_dep, make_orchestrator, toolchain: FakeToolchain, prefix: Path) -> None:
        dep = make_dep("vtk")
        results = make_orchestrator([dep], toolchain).status()
        assert results[0].status == "planned"
        assert results[0].state == InstallState.ABSENT
        assert results[0].action == Action.FRESH_CLONE
        assert toolchain.calls == []
        assert list(prefix.iterdir()) == []


class TestClean:
    def test_clean_removes_install_only(self, make_dep, make_orchestrator, toolchain: FakeToolchain) -> None:
        dep = make_dep("vtk")
        orch = make_orchestrator([dep], toolchain)
        orch.run()
        report = orch.clean()
        assert report.removed == [dep.install_dir]
        assert report.success
        assert not dep.install_dir.exists()
        assert dep.src_dir.is_dir()
        assert dep.build_dir.is_dir()

    def test_clean_respects_skip(self, make_dep, make_orchestrator, toolchain: FakeToolchain) -> None:
        deps = [make_dep("vtk"), make_dep("netgen")]
        make_orchestrator(deps, toolchain).run()
        report = make_orchestrator(deps, toolchain, skip=("vtk",)).clean()
        assert report.removed == [deps[1].install_dir]
        assert deps[0].install_dir.is_dir()

    def test_clean_failure_reported_and_others_continue(
        self, make_dep, make_orchestrator, toolchain: FakeToolchain, monkeypatch,
    ) -> None:
        deps = [make_dep("vtk"), make_dep("netgen")]
        orch = make_orchestrator(deps, toolchain)
        orch.run()
        real_rmtree = shutil.rmtree

        def flaky_rmtree(path, *args, **kwargs):
            if Path(path) == deps[0].install_dir:
                raise PermissionError(13, "Permission denied", str(path))
            return real_rmtree(path, *args, **kwargs)

        monkeypatch.setattr("depforge.services.orchestrator.shutil.rmtree", flaky_rmtree)
        report = orch.clean()
        assert report.success is False
        assert [p for p, _ in report.failed] == [deps[0].install_dir]
        assert "Permission denied" in report.failed[0][1]
        assert report.removed == [deps[1].install_dir]
        assert deps[0].install_dir.is_dir()
        assert not deps[1].install_dir.exists()


class TestEnvHints:
    def test_hints_for_successful_deps(self, make_dep, make_orchestrator) -> None:
        tc = FakeToolchain(fail_at={"netgen": "fetch"})
        vtk = make_dep("vtk", env_hints=(("VTK_DIR", "{install}/lib/cmake/vt*"),))
        netgen = make_dep("netgen", env_hints=(("NETGENDIR", "{install}/bin"),))
        orch = make_orchestrator([vtk, netgen], tc)
        lines = orch.env_hints(orch.run())
        assert lines == [
            f"# vtk 1.0: {vtk.install_dir}",
            f'export VTK_DIR="{vtk.install_dir}/lib/cmake/vtk"',
        ]
