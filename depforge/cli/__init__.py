"""depforge 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
from typing import Any, Callable

import click

from depforge import __version__
from depforge.core.config import DEFAULT_PREFIX, Config
from depforge.core.exceptions import DepForgeError, ValidationError
from depforge.core.manifest import load_dependencies
from depforge.core.models import Dependency
from depforge.utils.logger import setup_logging


def _parse_kv_pairs(pairs: tuple[str, ...], what: str = "参数") -> dict[str, str]:
    """解析 key=value 参数对"""
    result: dict[str, str] = {}
    for p in pairs:
        if "=" not in p:
            raise ValidationError(f"{what}格式应为 key=value: {p}")
        k, v = p.split("=", 1)
        result[k.strip()] = v.strip()
    return result


def _parse_overrides(pairs: tuple[str, ...]) -> dict[str, dict[str, str]]:
    """解析 NAME.KEY=VALUE 形式的签名覆盖"""
    result: dict[str, dict[str, str]] = {}
    for key, value in _parse_kv_pairs(pairs, "--set ").items():
        if "." not in key:
            raise ValidationError(f"--set 格式应为 NAME.KEY=VALUE: {key}={value}")
        name, flag = key.split(".", 1)
        result.setdefault(name, {})[flag] = value
    return result


def run_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """各命令共享的运行配置选项"""
    options = [
        click.option("--prefix", default=None, help=f"安装根目录（默认: ./{DEFAULT_PREFIX}）"),
        click.option("--config", "config_path", default="", help="配置文件路径 (YAML)"),
        click.option("--manifest", default=None, help="依赖清单路径（默认使用内置 VTK + Netgen 清单）"),
        click.option("--skip", multiple=True, help="跳过指定依赖（可多次指定）"),
        click.option("--dep-version", multiple=True, help="依赖版本，格式: NAME=VERSION"),
        click.option("--dep-ref", multiple=True, help="依赖源码 ref，格式: NAME=REF"),
        click.option("--set", "sets", multiple=True, help="覆盖期望配置，格式: NAME.KEY=VALUE"),
        click.option("--qt-dir", default=None, envvar="QT_DIR", help="Qt6 安装目录（含 lib/cmake/Qt6）"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def build_config(
    config_path: str, prefix: str | None, manifest: str | None,
    skip: tuple[str, ...], dep_version: tuple[str, ...], dep_ref: tuple[str, ...],
    sets: tuple[str, ...], qt_dir: str | None, **extra: Any,
) -> Config:
    """配置文件 + 命令行覆盖 -> 不可变 Config"""
    base = Config.from_file(config_path) if config_path else Config()
    overrides = {name: dict(flags) for name, flags in base.overrides.items()}
    for name, flags in _parse_overrides(sets).items():
        overrides.setdefault(name, {}).update(flags)
    return base.with_overrides(
        prefix=prefix,
        manifest=manifest,
        skip=tuple(dict.fromkeys((*base.skip, *skip))),
        versions={**base.versions, **_parse_kv_pairs(dep_version, "--dep-version ")},
        refs={**base.refs, **_parse_kv_pairs(dep_ref, "--dep-ref ")},
        overrides=overrides,
        qt_dir=qt_dir,
        **extra,
    )


def configure_logging(config: Config | None = None) -> None:
    """按优先级配置日志: --quiet > DEPFORGE_LOG_* 环境变量 > 配置文件"""
    ctx = click.get_current_context(silent=True)
    quiet = bool(ctx and ctx.find_root().params.get("quiet"))
    level = os.getenv("DEPFORGE_LOG_LEVEL") or (config.log_level if config else "INFO")
    json_env = os.getenv("DEPFORGE_LOG_JSON")
    if json_env is not None:
        json_output = json_env == "1"
    else:
        json_output = config.log_json if config else False
    setup_logging(level="WARNING" if quiet else level, json_output=json_output)


def load_run(**options: Any) -> tuple[Config, list[Dependency]]:
    """构造配置、应用其日志设置并加载依赖；配置错误以退出码 2 结束"""
    try:
        config = build_config(**options)
        configure_logging(config)
        return config, load_dependencies(config)
    except DepForgeError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.exceptions.Exit(2) from e


@click.group()
@click.version_option(version=__version__)
@click.option("--quiet", "-q", is_flag=True, help="只输出警告和错误")
def main(quiet: bool) -> None:
    """depforge - 原生依赖库增量构建与原子安装"""
    configure_logging()


# 注册各领域子命令
from depforge.cli.cmd_build import register as _reg_build  # noqa: E402
from depforge.cli.cmd_clean import register as _reg_clean  # noqa: E402

_reg_build(main)
_reg_clean(main)
