"""CMakeCache.txt 解析

构建树中的 CMakeCache.txt 是工具链持久化的配置缓存，格式为:

    # 注释
    // 帮助文本
    KEY:TYPE=VALUE
    KEY=VALUE

这里只把它解析为结构化的键值，兼容性判断交给 ConfigurationSignature。
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from depforge.core.models import ConfigurationSignature

logger = logging.getLogger(__name__)

CACHE_FILE = "CMakeCache.txt"

_ENTRY_RE = re.compile(r'^(?P<key>"[^"]+"|[^:=\s]+)(?::(?P<type>[A-Za-z_]+))?=(?P<value>.*)$')


def parse_cache_text(text: str) -> dict[str, str]:
    """解析缓存文本为 {key: value}，忽略注释、帮助文本和 INTERNAL 项"""
    entries: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", "//")):
            continue
        m = _ENTRY_RE.match(line)
        if m is None:
            continue
        if (m.group("type") or "").upper() == "INTERNAL":
            continue
        entries[m.group("key").strip('"')] = m.group("value").strip()
    return entries


def read_cache_file(path: str | Path) -> dict[str, str] | None:
    """读取缓存文件，不存在或不可读时返回 None"""
    path = Path(path)
    if not path.is_file():
        return None
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("读取 %s 失败: %s", path, e)
        return None
    return parse_cache_text(text)


def read_cache(build_dir: str | Path) -> dict[str, str] | None:
    """读取构建树的缓存"""
    return read_cache_file(Path(build_dir) / CACHE_FILE)


def signature_from_file(path: str | Path) -> ConfigurationSignature | None:
    """从缓存文件（构建树中的或安装目录内的副本）推导签名，缺失时为 None（未知）"""
    entries = read_cache_file(path)
    if entries is None:
        return None
    return ConfigurationSignature.from_mapping(entries)


def read_signature(build_dir: str | Path) -> ConfigurationSignature | None:
    """从构建树缓存推导实际签名"""
    return signature_from_file(Path(build_dir) / CACHE_FILE)
