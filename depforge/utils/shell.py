"""子进程执行：工具链的每一步都经由这里调用 git / cmake

CommandExecutor 协议把「怎么跑命令」与「跑什么命令」分开，测试注入 fake
即可，不需要 patch subprocess。

大型库的编译输出可达数十 MB，LocalExecutor 逐行读取合并后的
stdout/stderr，只保留尾部若干行作为失败诊断，DEBUG 级别下实时回显。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from typing import Protocol

from depforge.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)

# 失败诊断保留的字符数；编译器报错通常在输出末尾
DIAGNOSTIC_TAIL = 4000


@dataclass
class CommandResult:
    """命令执行结果"""

    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def diagnostic(self, limit: int = DIAGNOSTIC_TAIL) -> str:
        """合并 stdout/stderr 的尾部"""
        text = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return text[-limit:]


class CommandExecutor(Protocol):
    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）

    约定的返回码: 可执行文件不存在为 127，超时被杀为 124。
    """

    def __init__(self, tail_lines: int = 500) -> None:
        self.tail_lines = tail_lines

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)
        try:
            proc = subprocess.Popen(
                args, cwd=cwd, env=env, text=True, errors="replace",
                stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            return CommandResult(returncode=127, stdout="", stderr=str(e))

        expired = threading.Event()

        def _kill() -> None:
            expired.set()
            proc.kill()

        timer = threading.Timer(timeout, _kill) if timeout else None
        tail: deque[str] = deque(maxlen=self.tail_lines)
        with proc:
            if timer is not None:
                timer.start()
            try:
                for line in proc.stdout or ():
                    tail.append(line)
                    logger.debug("    | %s", line.rstrip())
                returncode = proc.wait()
            finally:
                if timer is not None:
                    timer.cancel()

        if expired.is_set():
            return CommandResult(
                returncode=124, stdout="".join(tail),
                stderr=f"命令超时 ({timeout}s): {shlex.join(args)}",
            )
        return CommandResult(returncode=returncode, stdout="".join(tail))


def run_cmd(
    cmd: str | list[str], *, cwd: str = ".",
    env: dict[str, str] | None = None,
    label: str = "cmd",
    timeout: int | None = None,
    executor: CommandExecutor | None = None,
) -> CommandResult:
    """执行命令，失败抛 ExecutionError（附带输出尾部作为诊断）

    Args:
        cmd: 命令字符串或参数列表
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        label: 日志标签，也用于错误信息
        timeout: 超时秒数，None 表示不限
        executor: 命令执行器，默认本地执行
    """
    display = cmd if isinstance(cmd, str) else shlex.join(cmd)
    logger.info("  %s: %s (cwd=%s)", label, display, cwd)
    r = (executor or LocalExecutor()).execute(cmd, cwd=cwd, env=env, timeout=timeout)
    if not r.success:
        raise ExecutionError(
            f"{label}失败 (rc={r.returncode})",
            returncode=r.returncode, diagnostic=r.diagnostic(),
        )
    return r
