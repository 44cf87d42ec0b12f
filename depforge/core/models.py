"""核心数据模型

所有核心数据类集中定义:
- ConfigurationSignature: 影响正确性的构建开关集合（不可变）
- Dependency: 一个可构建的依赖单元及其在 prefix 下的目录布局
- InstallState / Action: 每个依赖的状态机的状态与动作
- ProbeResult / DependencyResult / RunReport: 探测与执行结果
"""

from __future__ import annotations

import glob
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Mapping

# CMake 对布尔值大小写不敏感，且有多种写法
_TRUE_VALUES = frozenset(("ON", "YES", "TRUE", "Y", "1"))
_FALSE_VALUES = frozenset(("OFF", "NO", "FALSE", "N", "0"))

# 源码版本作为签名的一项传给 configure，随构建缓存和安装记录一起落盘
SOURCE_REF_KEY = "DEPFORGE_SOURCE_REF"
# 安装目录内的构建配置记录（install 步骤从构建树复制），随安装目录一起移动
INSTALL_RECORD = ".depforge/CMakeCache.txt"
# 源码树内记录检出版本的文件
SOURCE_STAMP = ".depforge-source"


def normalize_value(value: object) -> str:
    """按 CMake 语义归一化取值: 布尔写法统一为 ON/OFF，其余原样保留"""
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    text = str(value).strip()
    upper = text.upper()
    if upper in _TRUE_VALUES:
        return "ON"
    if upper in _FALSE_VALUES:
        return "OFF"
    return text


def _as_text(value: object) -> str:
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    return str(value).strip()


# =========================================================================
# 配置签名
# =========================================================================


@dataclass(frozen=True)
class ConfigurationSignature:
    """有序的 (key, value) 集合，构造后不可变

    取值按原样保存（传给工具链时不改写），比较时按 CMake 布尔语义归一化。
    兼容性是单向的: 期望签名中的每个 key 都必须在实际签名中存在且取值一致，
    实际签名中多余的 key 忽略。实际签名未知（None）时一律视为不兼容。
    """

    entries: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object] | None) -> ConfigurationSignature:
        if not mapping:
            return cls()
        return cls(tuple((str(k), _as_text(v)) for k, v in mapping.items()))

    def as_dict(self) -> dict[str, str]:
        return dict(self.entries)

    def get(self, key: str) -> str | None:
        return self.as_dict().get(key)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __str__(self) -> str:
        return ", ".join(f"{k}={v}" for k, v in self.entries) or "<empty>"

    def mismatches(
        self, actual: ConfigurationSignature | None,
    ) -> dict[str, tuple[str, str | None]]:
        """返回不满足的 key: {key: (期望值, 实际值或 None)}"""
        actual_map = actual.as_dict() if actual is not None else {}
        result: dict[str, tuple[str, str | None]] = {}
        for k, v in self.entries:
            got = actual_map.get(k)
            if got is None or normalize_value(got) != normalize_value(v):
                result[k] = (v, got)
        return result

    def compatible_with(self, actual: ConfigurationSignature | None) -> bool:
        if actual is None:
            return False
        return not self.mismatches(actual)

    def merged(self, overrides: Mapping[str, object]) -> ConfigurationSignature:
        """覆盖已有 key 的取值，新 key 追加到末尾"""
        if not overrides:
            return self
        merged = self.as_dict()
        for k, v in overrides.items():
            merged[str(k)] = _as_text(v)
        return ConfigurationSignature(tuple(merged.items()))


# =========================================================================
# 状态机
# =========================================================================


class InstallState(str, Enum):
    """依赖当前状态（每次运行重新推导，不落盘）"""

    ABSENT = "absent"
    MATCHING = "matching"
    STALE = "stale"
    PARTIALLY_BUILT = "partially_built"


class Action(str, Enum):
    """规划器给出的动作"""

    SKIP = "skip"
    REUSE_BUILD_DIR = "reuse_build_dir"
    RECONFIGURE = "reconfigure"
    FRESH_CLONE = "fresh_clone"


# =========================================================================
# 依赖定义
# =========================================================================


@dataclass(frozen=True)
class Dependency:
    """一个可构建的依赖单元

    目录布局（均位于 prefix 下）:
      <name>-src            源码树
      <name>-build          构建树
      <install_name>        最终安装目录
      <install_name>.new    staging 安装目录
      <install_name>.bak.*  被替换下来的旧安装

    源码树内的 .depforge-source 记录检出的版本；安装目录内的
    .depforge/CMakeCache.txt 记录该安装实际使用的构建配置。
    """

    name: str
    version: str
    repo_url: str
    prefix: Path
    ref: str = ""
    signature: ConfigurationSignature = field(default_factory=ConfigurationSignature)
    configure_args: tuple[tuple[str, str], ...] = ()
    install_markers: tuple[str, ...] = ()
    install_name: str = "{name}"
    env_hints: tuple[tuple[str, str], ...] = ()
    description: str = ""

    @property
    def resolved_ref(self) -> str:
        return self.ref.replace("{version}", self.version)

    @property
    def source_id(self) -> str:
        """检出的源码版本: ref 优先，未指定 ref 时为版本号"""
        return self.resolved_ref or self.version

    @property
    def desired_signature(self) -> ConfigurationSignature:
        """期望签名 + 源码版本，兼容性判断与 configure 都用它"""
        return self.signature.merged({SOURCE_REF_KEY: self.source_id})

    @property
    def src_dir(self) -> Path:
        return self.prefix / f"{self.name}-src"

    @property
    def build_dir(self) -> Path:
        return self.prefix / f"{self.name}-build"

    @property
    def install_dir(self) -> Path:
        dirname = self.install_name.format(name=self.name, version=self.version)
        return self.prefix / dirname

    @property
    def staging_dir(self) -> Path:
        return self.install_dir.with_name(self.install_dir.name + ".new")

    @property
    def install_record(self) -> Path:
        return self.install_dir / INSTALL_RECORD

    @property
    def source_stamp(self) -> Path:
        return self.src_dir / SOURCE_STAMP

    def backup_dir(self, timestamp: int) -> Path:
        return self.install_dir.with_name(f"{self.install_dir.name}.bak.{timestamp}")

    def render_env_hints(self) -> list[tuple[str, str]]:
        """渲染环境变量模板，{install} / {version} 占位符会被替换

        取值含通配符时按安装目录实际内容展开为第一个匹配项。
        """
        install = str(self.install_dir)
        rendered = []
        for key, template in self.env_hints:
            value = template.replace("{install}", install).replace("{version}", self.version)
            if "*" in value:
                matches = sorted(glob.glob(value))
                if matches:
                    value = matches[0]
            rendered.append((key, value))
        return rendered


# =========================================================================
# 结果
# =========================================================================


@dataclass
class ProbeResult:
    """StateProbe 的只读观测结果"""

    state: InstallState
    # 构建树缓存中的签名
    signature: ConfigurationSignature | None = None
    # 安装目录内记录的签名
    install_signature: ConfigurationSignature | None = None
    source_present: bool = False
    # 源码树检出版本与期望一致；没有检出记录时视为一致
    source_current: bool = True
    source_ref: str | None = None
    build_configured: bool = False
    install_present: bool = False
    install_verified: bool = False
    detail: str = ""


@dataclass
class DependencyResult:
    """单个依赖流水线的执行结果"""

    name: str
    status: str = "pending"  # skipped / installed / failed / disabled
    state: InstallState | None = None
    action: Action | None = None
    step: str = ""
    message: str = ""
    diagnostic: str = ""
    install_dir: str = ""
    backup_dir: str = ""
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class RunReport:
    """一次运行的汇总报告"""

    results: list[DependencyResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(r.failed for r in self.results)

    @property
    def failed(self) -> list[DependencyResult]:
        return [r for r in self.results if r.failed]

    def get(self, name: str) -> DependencyResult | None:
        for r in self.results:
            if r.name == name:
                return r
        return None


@dataclass
class CleanReport:
    """clean 的结果: 已删除的路径与删除失败的路径"""

    removed: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed
