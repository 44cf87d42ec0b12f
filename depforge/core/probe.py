"""依赖状态探测

只读检查 prefix 下某依赖的源码树 / 构建树 / 安装目录，推导 InstallState:

  安装目录存在 + 标记齐全 + 安装记录签名兼容 + 构建树未漂移   -> MATCHING
  安装目录存在，其余任一条件不满足                             -> STALE
  安装目录不存在 + 构建缓存存在                                 -> PARTIALLY_BUILT
  都不存在                                                       -> ABSENT

安装是否匹配以安装目录内的配置记录为准（它随安装一起提交），而不是构建树：
升级失败时构建树已是新配置，最终目录仍是旧安装。
记录缺失时签名未知，按不兼容处理（宁可重建也不误判为可复用）。
构建树存在但与期望不兼容时同样视为 STALE（配置漂移）；构建树缺失不影响判断。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from depforge.core import cmake_cache
from depforge.core.models import ConfigurationSignature, Dependency, InstallState, ProbeResult

logger = logging.getLogger(__name__)


def has_markers(root: Path, markers: Iterable[str]) -> bool:
    """root 下任一标记 glob 命中即视为产物完整；未声明标记时要求目录非空"""
    if not root.is_dir():
        return False
    patterns = list(markers)
    if not patterns:
        return any(root.iterdir())
    return any(next(root.glob(p), None) is not None for p in patterns)


def _dir_populated(path: Path) -> bool:
    return path.is_dir() and any(path.iterdir())


def read_source_stamp(dep: Dependency) -> str | None:
    """源码树记录的检出版本，没有记录时为 None"""
    try:
        return dep.source_stamp.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("读取 %s 失败: %s", dep.source_stamp, e)
        return None


class StateProbe:
    """依赖状态探测器（无副作用）"""

    def probe(self, dep: Dependency) -> ProbeResult:
        desired = dep.desired_signature
        signature = cmake_cache.read_signature(dep.build_dir)
        result = ProbeResult(
            state=InstallState.ABSENT,
            signature=signature,
            source_present=_dir_populated(dep.src_dir),
            build_configured=signature is not None,
            install_present=dep.install_dir.is_dir(),
        )
        if result.source_present:
            result.source_ref = read_source_stamp(dep)
            result.source_current = result.source_ref in (None, dep.source_id)

        if result.install_present:
            result.install_signature = cmake_cache.signature_from_file(dep.install_record)
            result.install_verified = has_markers(dep.install_dir, dep.install_markers)
            if not result.install_verified:
                result.state = InstallState.STALE
                result.detail = "安装目录缺少产物标记"
            elif result.install_signature is None:
                result.state = InstallState.STALE
                result.detail = "安装目录缺少构建配置记录，无法确认安装配置"
            elif not desired.compatible_with(result.install_signature):
                result.state = InstallState.STALE
                result.detail = "安装配置不匹配: " + _describe(desired, result.install_signature)
            elif signature is not None and not desired.compatible_with(signature):
                result.state = InstallState.STALE
                result.detail = "构建树配置已漂移: " + _describe(desired, signature)
            else:
                result.state = InstallState.MATCHING
                result.detail = "安装配置匹配"
        elif signature is not None:
            result.state = InstallState.PARTIALLY_BUILT
            result.detail = "已有构建树，无安装目录"
        else:
            result.detail = "无安装目录，无构建缓存"

        if not result.source_current:
            logger.warning(
                "%s: 源码树检出的是 %s，期望 %s，将重新拉取",
                dep.name, result.source_ref, dep.source_id,
            )
        logger.info(
            "探测 %s: state=%s (%s)", dep.name, result.state.value, result.detail,
        )
        return result


def _describe(desired: ConfigurationSignature, actual: ConfigurationSignature) -> str:
    parts = []
    for key, (expected, got) in desired.mismatches(actual).items():
        parts.append(f"{key} 期望 {expected} 实际 {got if got is not None else '<未设置>'}")
    return "; ".join(parts)
