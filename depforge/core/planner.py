"""构建规划器：纯函数，不触碰文件系统

决策表:

  | state            | 签名兼容              | 动作             |
  |------------------|-----------------------|------------------|
  | MATCHING         | 是（对照安装记录）    | SKIP             |
  | MATCHING         | 否                    | RECONFIGURE      |
  | STALE            | -                     | RECONFIGURE      |
  | PARTIALLY_BUILT  | 是（对照构建缓存）    | REUSE_BUILD_DIR  |
  | PARTIALLY_BUILT  | 否/未知               | RECONFIGURE      |
  | ABSENT           | -                     | RECONFIGURE      |

除 SKIP 外所有动作都需要源码树。源码缺失，或源码树检出的版本与期望不同时，
统一升级为 FRESH_CLONE。
"""

from __future__ import annotations

from depforge.core.models import Action, ConfigurationSignature, InstallState, ProbeResult

_STEPS: dict[Action, tuple[str, ...]] = {
    Action.SKIP: (),
    Action.REUSE_BUILD_DIR: ("compile", "install"),
    Action.RECONFIGURE: ("configure", "compile", "install"),
    Action.FRESH_CLONE: ("fetch", "configure", "compile", "install"),
}


def plan(desired: ConfigurationSignature, probe: ProbeResult) -> Action:
    """根据期望签名（含源码版本）和探测结果给出动作"""
    if probe.state == InstallState.MATCHING and desired.compatible_with(probe.install_signature):
        return Action.SKIP

    if probe.state == InstallState.PARTIALLY_BUILT and desired.compatible_with(probe.signature):
        action = Action.REUSE_BUILD_DIR
    else:
        action = Action.RECONFIGURE

    if not probe.source_present or not probe.source_current:
        return Action.FRESH_CLONE
    return action


def steps_for(action: Action) -> tuple[str, ...]:
    """动作对应的工具链步骤序列"""
    return _STEPS[action]


class BuildPlanner:
    """规划器对象封装，便于在编排器中注入替换"""

    def plan(self, desired: ConfigurationSignature, probe: ProbeResult) -> Action:
        return plan(desired, probe)
