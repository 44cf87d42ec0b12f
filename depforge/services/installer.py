"""原子安装器：staging 校验 + 备份 + 替换

提交流程:
  1. 校验 staging 含预期产物标记，失败则不触碰最终目录
  2. 最终目录已存在时 rename 为 <install>.bak.<timestamp>（rename 而非复制）
  3. rename staging 为最终目录

第 3 步失败时系统处于「只有备份、没有安装」的降级状态，如实上报而不自动修复；
此时最终目录要么不存在要么完整，不会出现半写状态。
备份从不自动删除，保留策略由用户决定。
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from depforge.core.exceptions import SwapError, VerificationError
from depforge.core.probe import has_markers

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    """提交结果"""

    install_dir: Path
    backup_dir: Path | None = None


class AtomicInstaller:
    """staging → 最终目录 的原子替换"""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def verify(self, name: str, staging: Path, markers: Iterable[str]) -> None:
        markers = list(markers)
        if not staging.is_dir():
            raise VerificationError(name, f"staging 目录不存在: {staging}")
        if not has_markers(staging, markers):
            raise VerificationError(
                name,
                f"staging 目录 {staging} 缺少产物标记 ({', '.join(markers) or '非空目录'})，请检查构建输出",
            )

    def backup_path(self, final: Path) -> Path:
        """<final>.bak.<timestamp>，同一秒内重复提交时追加序号"""
        stamp = int(self._clock())
        candidate = final.with_name(f"{final.name}.bak.{stamp}")
        n = 1
        while candidate.exists():
            candidate = final.with_name(f"{final.name}.bak.{stamp}-{n}")
            n += 1
        return candidate

    def commit(
        self, name: str, staging: Path, final: Path, markers: Iterable[str] = (),
    ) -> CommitResult:
        self.verify(name, staging, markers)

        backup: Path | None = None
        if final.exists():
            backup = self.backup_path(final)
            logger.info("%s: 备份已有安装 %s -> %s", name, final, backup)
            try:
                os.rename(final, backup)
            except OSError as e:
                raise SwapError(name, f"备份已有安装失败 {final} -> {backup}: {e}") from e

        logger.info("%s: 移动新安装到最终位置 %s", name, final)
        try:
            os.rename(staging, final)
        except OSError as e:
            if backup is not None:
                logger.error(
                    "%s: 替换失败，当前无安装目录，旧安装保留在 %s", name, backup,
                )
                raise SwapError(
                    name,
                    f"移动 {staging} -> {final} 失败: {e}；旧安装已备份到 {backup}，当前无安装目录",
                ) from e
            raise SwapError(name, f"移动 {staging} -> {final} 失败: {e}") from e

        logger.info("%s: 已安装到 %s", name, final)
        return CommitResult(install_dir=final, backup_dir=backup)
