"""外部工具链适配：git 拉取 + CMake 配置 / 编译 / 安装

工具链被视为不透明、可能失败的子进程；这里只负责拼装命令并执行，
失败统一抛 ExecutionError（附带输出尾部），由 BuildExecutor 映射为步骤异常。

所有命令经由注入的 CommandExecutor 执行，测试可替换为 fake。
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Protocol

from depforge.core.exceptions import ExecutionError, UnsupportedEnvironmentError
from depforge.core.models import Dependency
from depforge.utils.shell import CommandExecutor, LocalExecutor, run_cmd

logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@\-]+$")


class Toolchain(Protocol):
    """工具链协议：BuildExecutor 只依赖这四个步骤"""

    def fetch(self, dep: Dependency, dest: Path) -> None:
        """把源码拉取到 dest（dest 不存在）"""
        ...

    def configure(self, dep: Dependency, staging: Path) -> None:
        """在 dep.build_dir 中生成构建元数据，安装目标为 staging"""
        ...

    def compile(self, dep: Dependency, jobs: int) -> None:
        """以 jobs 并行度编译"""
        ...

    def install(self, dep: Dependency, staging: Path) -> None:
        """把构建产物安装到 staging"""
        ...


class CMakeToolchain:
    """git + CMake 工具链（默认实现）"""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        cmake: str = "cmake",
        git: str = "git",
        generator: str = "",
        timeout: int | None = None,
    ) -> None:
        self.executor = executor or LocalExecutor()
        self.cmake = cmake
        self.git = git
        self.generator = generator
        self.timeout = timeout

    def _run(self, cmd: list[str], *, cwd: str = ".", label: str) -> None:
        run_cmd(
            cmd, cwd=cwd, label=label,
            timeout=self.timeout, executor=self.executor,
        )

    # ---- 宿主环境 ----

    def check_environment(self) -> str:
        """确认 git / cmake 可用，返回 cmake 版本号"""
        missing = [tool for tool in (self.git, self.cmake) if shutil.which(tool) is None]
        if missing:
            raise UnsupportedEnvironmentError(
                f"缺少必需工具: {', '.join(missing)}，请先安装后重试"
            )
        r = self.executor.execute([self.cmake, "--version"])
        first_line = r.stdout.splitlines()[0] if r.stdout else ""
        version = first_line.split()[-1] if first_line else "unknown"
        logger.info("CMake 版本: %s", version)
        return version

    # ---- 步骤 ----

    def fetch(self, dep: Dependency, dest: Path) -> None:
        ref = dep.resolved_ref
        if ref and not _SAFE_REF_RE.match(ref):
            raise ExecutionError(f"ref 包含非法字符: {ref}")
        if not ref:
            self._run(
                [self.git, "clone", "--depth", "1", dep.repo_url, str(dest)],
                label="git clone",
            )
            return
        try:
            self._run(
                [self.git, "clone", "--depth", "1", "--branch", ref, dep.repo_url, str(dest)],
                label="git clone",
            )
        except ExecutionError:
            # 回退: 完整 clone + checkout（ref 可能是 commit SHA）
            logger.warning("%s: 浅克隆 %s 失败，回退为完整克隆", dep.name, ref)
            if dest.exists():
                shutil.rmtree(dest)
            self._run([self.git, "clone", dep.repo_url, str(dest)], label="git clone")
            self._run([self.git, "checkout", ref], cwd=str(dest), label="git checkout")

    def configure_command(self, dep: Dependency, staging: Path) -> list[str]:
        cmd = [self.cmake, "-S", str(dep.src_dir), "-B", str(dep.build_dir)]
        if self.generator:
            cmd += ["-G", self.generator]
        cmd.append(f"-DCMAKE_INSTALL_PREFIX={staging}")
        cmd += [f"-D{k}={v}" for k, v in dep.desired_signature]
        cmd += [f"-D{k}={v}" for k, v in dep.configure_args]
        return cmd

    def configure(self, dep: Dependency, staging: Path) -> None:
        self._run(self.configure_command(dep, staging), cwd=str(dep.build_dir), label="cmake configure")

    def compile(self, dep: Dependency, jobs: int) -> None:
        self._run(
            [self.cmake, "--build", str(dep.build_dir), "--parallel", str(jobs)],
            cwd=str(dep.build_dir), label="cmake build",
        )

    def install(self, dep: Dependency, staging: Path) -> None:
        self._run(
            [self.cmake, "--install", str(dep.build_dir), "--prefix", str(staging)],
            cwd=str(dep.build_dir), label="cmake install",
        )
