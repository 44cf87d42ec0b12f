"""编排器：每个依赖独立走 Probe → Plan → Execute → Commit

依赖之间互不依赖（安装到 prefix 下互不重叠的子目录），因此:
  - 某个依赖失败只中止它自己的流水线，其他依赖继续
  - 已提交的依赖不会因同一次运行中其他依赖失败而回滚
  - Config.parallel > 1 时每个依赖一个任务并发执行，结果在屏障处汇总

对同一 prefix 的并发调用不加锁，由调用方保证互斥。
"""

from __future__ import annotations

import logging
import shutil
import time
from concurrent.futures import ThreadPoolExecutor

from depforge.core.config import Config
from depforge.core.exceptions import BuildStepError, DepForgeError
from depforge.core.models import Action, CleanReport, Dependency, DependencyResult, RunReport
from depforge.core.planner import BuildPlanner
from depforge.core.probe import StateProbe
from depforge.services.executor import BuildExecutor
from depforge.services.installer import AtomicInstaller
from depforge.services.toolchain import CMakeToolchain

logger = logging.getLogger(__name__)


def default_executor(config: Config) -> BuildExecutor:
    """按配置构造基于 CMake 的执行器"""
    toolchain = CMakeToolchain(
        cmake=config.cmake, git=config.git, generator=config.generator,
        timeout=config.command_timeout or None,
    )
    return BuildExecutor(toolchain, jobs=config.jobs)


class Orchestrator:
    """依赖构建编排器"""

    def __init__(
        self,
        config: Config,
        dependencies: list[Dependency],
        *,
        probe: StateProbe | None = None,
        planner: BuildPlanner | None = None,
        executor: BuildExecutor | None = None,
        installer: AtomicInstaller | None = None,
    ) -> None:
        self.config = config
        self.dependencies = list(dependencies)
        self.probe = probe or StateProbe()
        self.planner = planner or BuildPlanner()
        self.executor = executor or default_executor(config)
        self.installer = installer or AtomicInstaller()

    def _selected(self) -> list[Dependency]:
        return [d for d in self.dependencies if d.name not in self.config.skip]

    # ---- 运行 ----

    def run(self) -> RunReport:
        logger.info(
            "开始编排 (prefix: %s, 依赖: %s, 跳过: %s)",
            self.config.prefix,
            ", ".join(d.name for d in self.dependencies) or "-",
            ", ".join(self.config.skip) or "-",
        )
        if self.config.parallel > 1 and len(self.dependencies) > 1:
            with ThreadPoolExecutor(max_workers=self.config.parallel) as pool:
                results = list(pool.map(self.run_one, self.dependencies))
        else:
            results = [self.run_one(d) for d in self.dependencies]

        report = RunReport(results=results)
        if report.success:
            logger.info("编排完成: %d 个依赖全部就绪", len(results))
        else:
            logger.warning(
                "编排汇总: %d 成功, %d 失败 (%s)",
                len(results) - len(report.failed), len(report.failed),
                ", ".join(r.name for r in report.failed),
            )
        return report

    def run_one(self, dep: Dependency) -> DependencyResult:
        """单个依赖的完整流水线，异常在此隔离"""
        result = DependencyResult(name=dep.name)
        if dep.name in self.config.skip:
            result.status = "disabled"
            result.message = "按要求跳过"
            logger.info("跳过 %s（--skip）", dep.name)
            return result

        start = time.monotonic()
        try:
            probe = self.probe.probe(dep)
            result.state = probe.state
            action = self.planner.plan(dep.desired_signature, probe)
            result.action = action
            logger.info(
                "%s: state=%s -> action=%s", dep.name, probe.state.value, action.value,
                extra={"dependency": dep.name, "action": action.value},
            )

            if action == Action.SKIP:
                result.status = "skipped"
                result.install_dir = str(dep.install_dir)
                result.message = "已安装且配置匹配"
                logger.info("%s: 已安装且配置匹配，跳过构建", dep.name)
                return result

            staging = self.executor.execute(dep, action)
            commit = self.installer.commit(
                dep.name, staging, dep.install_dir, dep.install_markers,
            )
            result.status = "installed"
            result.install_dir = str(commit.install_dir)
            result.backup_dir = str(commit.backup_dir) if commit.backup_dir else ""
            result.message = f"已安装 ({action.value})"
        except BuildStepError as e:
            result.status = "failed"
            result.step = e.step
            result.message = str(e)
            result.diagnostic = e.diagnostic
            logger.error("%s", e, extra={"dependency": dep.name, "step": e.step})
        except (DepForgeError, OSError) as e:
            result.status = "failed"
            result.step = "internal"
            result.message = f"{dep.name}: {e}"
            logger.exception("%s: 流水线异常", dep.name, extra={"dependency": dep.name})
        finally:
            result.duration = time.monotonic() - start
        return result

    # ---- 只读 / 维护 ----

    def status(self) -> list[DependencyResult]:
        """探测并规划所有依赖，不执行任何构建"""
        results = []
        for dep in self.dependencies:
            r = DependencyResult(name=dep.name, install_dir=str(dep.install_dir))
            if dep.name in self.config.skip:
                r.status = "disabled"
            else:
                probe = self.probe.probe(dep)
                r.state = probe.state
                r.action = self.planner.plan(dep.desired_signature, probe)
                r.status = "planned"
                r.message = probe.detail
            results.append(r)
        return results

    def clean(self) -> CleanReport:
        """只删除最终安装目录（及遗留 staging），源码树 / 构建树 / 备份保留

        某个路径删除失败只记录，不影响其他路径。
        """
        report = CleanReport()
        for dep in self._selected():
            for path in (dep.install_dir, dep.staging_dir):
                if not path.exists():
                    continue
                logger.info("删除 %s", path)
                try:
                    shutil.rmtree(path)
                except OSError as e:
                    logger.error("%s: 删除 %s 失败: %s", dep.name, path, e, extra={"dependency": dep.name})
                    report.failed.append((path, str(e)))
                    continue
                report.removed.append(path)
        logger.info(
            "清理完成，源码与构建目录保留在 %s 以便增量重建", self.config.prefix,
        )
        return report

    def env_hints(self, report: RunReport) -> list[str]:
        """生成可被 shell source 的环境变量提示"""
        by_name = {d.name: d for d in self.dependencies}
        lines: list[str] = []
        for r in report.results:
            dep = by_name.get(r.name)
            if dep is None or r.status not in ("installed", "skipped"):
                continue
            hints = dep.render_env_hints()
            if not hints:
                continue
            lines.append(f"# {dep.name} {dep.version}: {dep.install_dir}")
            lines.extend(f'export {k}="{v}"' for k, v in hints)
        return lines
