"""YAML 读取

配置文件和依赖清单都是顶层为映射的 YAML。这里统一 utf-8、大小上限与
顶层类型检查，解析失败原样抛出，由调用方转换为 ConfigError。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 配置 / 清单都很小，超过上限基本是传错了文件
MAX_YAML_SIZE = 10 * 1024 * 1024


def load_yaml(path: str | Path, *, required: bool = False) -> dict[str, Any]:
    """读取顶层为映射的 YAML 文件

    参数:
        path: 文件路径
        required: 为 True 时文件不存在抛 FileNotFoundError，否则返回空字典

    返回:
        解析后的字典；空文件返回空字典

    异常:
        FileNotFoundError: required 且文件不存在
        ValueError: 文件过大，或顶层不是映射
        yaml.YAMLError: 语法错误
    """
    p = Path(path)
    if not p.is_file():
        if required:
            raise FileNotFoundError(f"文件不存在: {p}")
        return {}

    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(f"YAML 文件过大: {p} ({size} 字节，上限 {MAX_YAML_SIZE})")

    with open(p, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    logger.debug("已读取 %s", p)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{p} 顶层应为映射，实际为 {type(data).__name__}")
    return data
