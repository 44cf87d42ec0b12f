"""CLI：清理安装目录"""

from __future__ import annotations

import click

from depforge.cli import load_run, run_options
from depforge.services.orchestrator import Orchestrator


def register(group: click.Group) -> None:
    group.add_command(clean)


@click.command()
@run_options
def clean(**options: object) -> None:
    """删除安装目录（保留源码和构建目录，下次运行增量重建）"""
    config, deps = load_run(**options)

    report = Orchestrator(config, deps).clean()
    for path in report.removed:
        click.echo(f"已删除: {path}")
    for path, reason in report.failed:
        click.echo(f"[ERROR] 删除 {path} 失败: {reason}", err=True)
    if not report.removed and not report.failed:
        click.echo("没有需要删除的安装目录。")
    if not report.success:
        raise click.exceptions.Exit(1)
