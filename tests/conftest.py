"""测试共享 fixture：fake 工具链 + 依赖工厂

fake 工具链不调用任何子进程，只在文件系统上模拟 CMake 的足迹:

  fetch      → <dest>/CMakeLists.txt（注释中写入检出的 ref）
  configure  → <build>/CMakeCache.txt（写入期望签名、源码版本和 configure 参数）
  compile    → <build>/built.o
  install    → <staging>/lib/cmake/<name>/<name>-config.cmake

安装记录（<staging>/.depforge/CMakeCache.txt）由 BuildExecutor 自己复制，
fake 不参与。

fail_at 指定的步骤会抛 ExecutionError；install 失败前会先写入部分产物，
用于验证 staging 保留现场。
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from depforge.core.config import Config
from depforge.core.exceptions import ExecutionError
from depforge.core.models import ConfigurationSignature, Dependency
from depforge.services.executor import BuildExecutor
from depforge.services.orchestrator import Orchestrator


class FakeToolchain:
    """记录调用并模拟产物的工具链"""

    def __init__(self, fail_at: dict[str, str] | None = None) -> None:
        # {依赖名: 失败步骤}
        self.fail_at = dict(fail_at or {})
        self.calls: list[tuple[str, str]] = []

    def _enter(self, step: str, dep: Dependency) -> None:
        self.calls.append((step, dep.name))
        if self.fail_at.get(dep.name) == step:
            raise ExecutionError(
                f"{step}失败 (rc=2)", returncode=2,
                diagnostic=f"error: simulated {step} failure for {dep.name}",
            )

    def steps(self, name: str) -> list[str]:
        return [step for step, dep in self.calls if dep == name]

    def check_environment(self) -> str:
        return "3.30.0"

    def fetch(self, dep: Dependency, dest: Path) -> None:
        self._enter("fetch", dep)
        dest.mkdir(parents=True)
        (dest / "CMakeLists.txt").write_text(f"project({dep.name})\n# ref {dep.source_id}\n")

    def configure(self, dep: Dependency, staging: Path) -> None:
        self._enter("configure", dep)
        lines = ["# This is the CMakeCache file.", f"CMAKE_INSTALL_PREFIX:PATH={staging}"]
        lines += [f"{k}:STRING={v}" for k, v in dep.desired_signature]
        lines += [f"{k}:STRING={v}" for k, v in dep.configure_args]
        (dep.build_dir / "CMakeCache.txt").write_text("\n".join(lines) + "\n")

    def compile(self, dep: Dependency, jobs: int) -> None:
        self._enter("compile", dep)
        (dep.build_dir / "built.o").write_text(f"jobs={jobs}\n")

    def install(self, dep: Dependency, staging: Path) -> None:
        staging.mkdir(parents=True, exist_ok=True)
        if self.fail_at.get(dep.name) == "install":
            (staging / "partial.txt").write_text("half written\n")
        self._enter("install", dep)
        cmake_dir = staging / "lib" / "cmake" / dep.name
        cmake_dir.mkdir(parents=True, exist_ok=True)
        (cmake_dir / f"{dep.name}-config.cmake").write_text("# config\n")


def make_dependency(
    prefix: Path,
    name: str = "vtk",
    signature: dict[str, str] | None = None,
    **kwargs: object,
) -> Dependency:
    """构造测试用依赖，默认产物标记为 lib/cmake/<name>"""
    kwargs.setdefault("install_markers", (f"lib/cmake/{name}",))
    kwargs.setdefault("version", "1.0")
    kwargs.setdefault("repo_url", f"https://example.invalid/{name}.git")
    return Dependency(
        name=name,
        prefix=prefix,
        signature=ConfigurationSignature.from_mapping(
            signature if signature is not None else {"WITH_QT": "ON"},
        ),
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture()
def prefix(tmp_path: Path) -> Path:
    p = tmp_path / "3rdparty"
    p.mkdir()
    return p


@pytest.fixture()
def make_dep(prefix: Path) -> Callable[..., Dependency]:
    """依赖工厂 fixture: make_dep("netgen", {"USE_PYTHON": "ON"})"""
    def _make(name: str = "vtk", signature: dict[str, str] | None = None, **kwargs: object) -> Dependency:
        return make_dependency(prefix, name, signature, **kwargs)
    return _make


@pytest.fixture()
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture()
def make_orchestrator(prefix: Path) -> Callable[..., Orchestrator]:
    """编排器工厂 fixture，注入 fake 工具链"""
    def _make(
        deps: list[Dependency], tc: FakeToolchain, **config: object,
    ) -> Orchestrator:
        cfg = Config(prefix=str(prefix), **config)  # type: ignore[arg-type]
        return Orchestrator(cfg, deps, executor=BuildExecutor(tc, jobs=2))
    return _make
