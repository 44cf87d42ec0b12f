"""构建执行器

职责:
- 按规划动作依次执行 fetch → configure → compile → install
- 所有安装都落到 staging 目录，绝不写最终安装目录
- 把工具链失败映射为带依赖名、步骤和诊断输出的步骤异常

失败时 staging 目录原样保留供排查；只有与 staging 无关的临时工作目录
（源码拉取用的临时目录）保证在任何退出路径上被清理。
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from depforge.core.exceptions import (
    BuildStepError,
    CompileError,
    ConfigureError,
    ExecutionError,
    FetchError,
    InstallStepError,
)
from depforge.core.cmake_cache import CACHE_FILE
from depforge.core.models import INSTALL_RECORD, SOURCE_STAMP, Action, Dependency
from depforge.core.planner import steps_for
from depforge.core.probe import read_source_stamp
from depforge.services.toolchain import Toolchain

logger = logging.getLogger(__name__)


def default_jobs() -> int:
    """默认编译并行度: 主机 CPU 数，无法获取时为 4"""
    return os.cpu_count() or 4


@contextmanager
def scratch_dir(parent: Path, prefix: str) -> Iterator[Path]:
    """在 parent 下创建临时工作目录，退出时（含异常 / 中断）删除

    清理失败不覆盖原异常。
    """
    parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(
        prefix=prefix, dir=str(parent), ignore_cleanup_errors=True,
    ) as path:
        yield Path(path)


class BuildExecutor:
    """构建执行器"""

    def __init__(self, toolchain: Toolchain, jobs: int = 0) -> None:
        self.toolchain = toolchain
        self.jobs = jobs if jobs > 0 else default_jobs()

    def execute(self, dep: Dependency, action: Action) -> Path:
        """执行动作对应的步骤，返回 staging 路径；任一步失败抛 BuildStepError"""
        steps = steps_for(action)
        if not steps:
            raise ValueError(f"{dep.name}: 动作 {action.value} 无需执行")

        start = time.monotonic()
        dep.prefix.mkdir(parents=True, exist_ok=True)
        logger.info("%s: 执行 %s (%s)", dep.name, action.value, " -> ".join(steps))

        if "fetch" in steps:
            self.fetch(dep)
        if "configure" in steps:
            self.configure(dep)
        self.compile(dep)
        self.install(dep)

        logger.info(
            "%s: 已安装到 staging %s (%.1fs)",
            dep.name, dep.staging_dir, time.monotonic() - start,
        )
        return dep.staging_dir

    # ---- 各步骤 ----

    def fetch(self, dep: Dependency) -> None:
        """拉取源码到临时目录，成功后再 rename 为 <name>-src

        已有源码树检出的版本与期望相同（或没有检出记录）时直接复用；
        记录的版本不同则删除后重新拉取。
        """
        if dep.src_dir.exists():
            if any(dep.src_dir.iterdir()):
                stamp = read_source_stamp(dep)
                if stamp is None or stamp == dep.source_id:
                    logger.info("%s: 源码已存在 %s，跳过拉取", dep.name, dep.src_dir)
                    return
                logger.warning(
                    "%s: 源码树检出的是 %s，期望 %s，删除后重新拉取",
                    dep.name, stamp, dep.source_id,
                )
            try:
                shutil.rmtree(dep.src_dir)
            except OSError as e:
                raise FetchError(dep.name, f"无法删除旧源码树 {dep.src_dir}: {e}") from e

        logger.info("%s: 拉取源码 %s (ref=%s)", dep.name, dep.repo_url, dep.resolved_ref or "默认分支")
        with scratch_dir(dep.prefix, f".{dep.name}-fetch-") as scratch:
            target = scratch / "src"
            self._step(FetchError, dep, lambda: self.toolchain.fetch(dep, target))
            try:
                (target / SOURCE_STAMP).write_text(dep.source_id + "\n", encoding="utf-8")
                os.rename(target, dep.src_dir)
            except OSError as e:
                raise FetchError(dep.name, f"无法移动源码到 {dep.src_dir}: {e}") from e

    def configure(self, dep: Dependency) -> None:
        """丢弃构建树配置（源码树不动）后重新 configure"""
        if dep.build_dir.exists():
            logger.info("%s: 丢弃已有构建树 %s", dep.name, dep.build_dir)
            try:
                shutil.rmtree(dep.build_dir)
            except OSError as e:
                raise ConfigureError(dep.name, f"无法删除构建树 {dep.build_dir}: {e}") from e
        dep.build_dir.mkdir(parents=True, exist_ok=True)
        logger.info("%s: configure (%s)", dep.name, dep.desired_signature)
        self._step(ConfigureError, dep, lambda: self.toolchain.configure(dep, dep.staging_dir))

    def compile(self, dep: Dependency) -> None:
        logger.info("%s: 编译 (jobs: %d)", dep.name, self.jobs)
        self._step(CompileError, dep, lambda: self.toolchain.compile(dep, self.jobs))

    def install(self, dep: Dependency) -> None:
        """安装到 staging；上次失败遗留的 staging 先清掉"""
        if dep.staging_dir.exists():
            logger.info("%s: 清除上次遗留的 staging %s", dep.name, dep.staging_dir)
            try:
                shutil.rmtree(dep.staging_dir)
            except OSError as e:
                raise InstallStepError(dep.name, f"无法清除 staging {dep.staging_dir}: {e}") from e
        logger.info("%s: 安装到 staging %s", dep.name, dep.staging_dir)
        self._step(InstallStepError, dep, lambda: self.toolchain.install(dep, dep.staging_dir))
        self._record_configuration(dep)

    @staticmethod
    def _record_configuration(dep: Dependency) -> None:
        """把构建缓存复制进 staging，作为该安装实际使用的配置记录"""
        cache = dep.build_dir / CACHE_FILE
        record = dep.staging_dir / INSTALL_RECORD
        try:
            record.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(cache, record)
        except OSError as e:
            raise InstallStepError(dep.name, f"无法记录构建配置 {cache} -> {record}: {e}") from e

    @staticmethod
    def _step(error_cls: type[BuildStepError], dep: Dependency, fn) -> None:
        try:
            fn()
        except ExecutionError as e:
            logger.error("%s: %s 失败: %s", dep.name, error_cls.step, e)
            raise error_cls(dep.name, str(e), e.diagnostic) from e
        except OSError as e:
            logger.error("%s: %s 失败: %s", dep.name, error_cls.step, e)
            raise error_cls(dep.name, str(e)) from e
