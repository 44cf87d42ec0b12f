"""集中配置管理

一次运行的全部输入（prefix、版本/ref 覆盖、跳过列表、签名覆盖等）集中在
不可变的 Config 中，由 CLI 构造后显式传入编排器，不使用进程级全局状态。
支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any

import yaml

from depforge.core.exceptions import ConfigError
from depforge.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "3rdparty"


@dataclass(frozen=True)
class Config:
    """一次编排运行的配置"""

    # 目录
    prefix: str = DEFAULT_PREFIX
    manifest: str = ""  # 为空则使用内置清单（VTK + Netgen）

    # 依赖选择与覆盖
    skip: tuple[str, ...] = ()
    versions: dict[str, str] = field(default_factory=dict)
    refs: dict[str, str] = field(default_factory=dict)
    # {依赖名: {KEY: VALUE}}，合并进期望签名
    overrides: dict[str, dict[str, str]] = field(default_factory=dict)
    qt_dir: str = ""

    # 执行
    jobs: int = 0  # 0 表示按 CPU 数
    parallel: int = 1  # 同时处理的依赖数，1 为顺序执行
    command_timeout: int = 0  # 单条工具链命令超时秒数，0 表示不限
    cmake: str = "cmake"
    git: str = "git"
    generator: str = ""

    # 日志
    log_level: str = "INFO"
    log_json: bool = False

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"配置文件读取失败: {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        if "skip" in matched:
            matched["skip"] = tuple(matched["skip"] or ())
        try:
            cfg = cls(**matched, extra=extra)
        except TypeError as e:
            raise ConfigError(f"配置文件内容无效: {path}: {e}") from e
        logger.info("配置已加载: %s", path)
        return cfg

    def with_overrides(self, **changes: Any) -> Config:
        """返回应用了覆盖项的新配置；值为 None 的项忽略"""
        applied = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **applied) if applied else self
