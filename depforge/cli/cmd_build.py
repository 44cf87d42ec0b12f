"""CLI：构建、状态查看、清单列表"""

from __future__ import annotations

import click

from depforge.cli import load_run, run_options
from depforge.core.exceptions import UnsupportedEnvironmentError
from depforge.core.models import RunReport
from depforge.services.executor import BuildExecutor
from depforge.services.orchestrator import Orchestrator
from depforge.services.toolchain import CMakeToolchain

# 诊断输出回显到 stderr 的最大行数
_DIAGNOSTIC_LINES = 30


def register(group: click.Group) -> None:
    group.add_command(build)
    group.add_command(status)
    group.add_command(list_deps)


def _echo_report(report: RunReport) -> None:
    for r in report.results:
        action = r.action.value if r.action else "-"
        click.echo(
            f"  {r.name:12s} {r.status:10s} action={action:16s} "
            f"{r.install_dir or '-'} ({r.duration:.1f}s)",
            err=True,
        )
        if r.backup_dir:
            click.echo(f"  {'':12s} 旧安装已备份: {r.backup_dir}", err=True)
    for r in report.failed:
        click.echo(f"[ERROR] {r.message}", err=True)
        if r.diagnostic:
            for line in r.diagnostic.splitlines()[-_DIAGNOSTIC_LINES:]:
                click.echo(f"    {line}", err=True)


@click.command()
@run_options
@click.option("--jobs", "-j", default=None, type=int, help="编译并行度（默认按 CPU 数）")
@click.option("--parallel", default=None, type=int, help="同时构建的依赖数（默认 1，顺序执行）")
@click.pass_context
def build(ctx: click.Context, jobs: int | None, parallel: int | None, **options: object) -> None:
    """按需构建并原子安装依赖（配置匹配则跳过）"""
    config, deps = load_run(jobs=jobs, parallel=parallel, **options)

    toolchain = CMakeToolchain(
        cmake=config.cmake, git=config.git, generator=config.generator,
        timeout=config.command_timeout or None,
    )
    try:
        toolchain.check_environment()
    except UnsupportedEnvironmentError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.exceptions.Exit(2) from e

    orch = Orchestrator(config, deps, executor=BuildExecutor(toolchain, jobs=config.jobs))
    report = orch.run()
    _echo_report(report)

    hints = orch.env_hints(report)
    if hints:
        click.echo("# 加入 shell 配置 (如 ~/.bashrc 或 ~/.zshrc):")
        for line in hints:
            click.echo(line)

    if not report.success:
        ctx.exit(1)


@click.command()
@run_options
def status(**options: object) -> None:
    """查看每个依赖的当前状态和下一次运行的动作（不执行构建）"""
    config, deps = load_run(**options)
    orch = Orchestrator(config, deps)
    for r in orch.status():
        state = r.state.value if r.state else "-"
        action = r.action.value if r.action else "-"
        click.echo(f"  {r.name:12s} state={state:16s} action={action:16s} {r.message}")


@click.command(name="list")
@run_options
def list_deps(**options: object) -> None:
    """列出清单中的依赖及其期望配置"""
    config, deps = load_run(**options)
    if not deps:
        click.echo("清单中没有依赖。")
        return
    for d in deps:
        marker = " (跳过)" if d.name in config.skip else ""
        click.echo(f"  {d.name:12s} {d.version:12s} {d.install_dir}{marker}")
        if d.description:
            click.echo(f"  {'':12s} {d.description}")
        click.echo(f"  {'':12s} 期望配置: {d.signature}")
