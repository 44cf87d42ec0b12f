"""depforge 日志配置

日志统一写 stderr，stdout 只留给可被 shell 消费的输出（环境变量提示、表格）。
文本格式给人看；JSON 格式一行一条，供 CI 收集。

调用方可通过 extra 附带上下文，JSON 输出会带上这些字段:

    logger.error("%s", e, extra={"dependency": "vtk", "step": "compile"})
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

# 进入 JSON 输出的 extra 字段
CONTEXT_FIELDS = ("dependency", "step", "action")

_TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
_DATE_FORMAT = "%H:%M:%S"

# setup_logging 安装过的 handler，reset_logging 只移除这些
_installed: list[logging.Handler] = []


class JSONFormatter(logging.Formatter):
    """一行一条的 JSON 日志

    输出字段: ts, level, logger, msg，以及出现在记录上的 CONTEXT_FIELDS、
    异常堆栈 (exception)。
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(
    level: str = "INFO", json_output: bool = False, stream: IO[str] | None = None,
) -> logging.Handler:
    """给根日志器安装一个 handler；重复调用会替换上一次安装的

    参数:
        level: 日志级别名，无法识别时按 INFO
        json_output: True 时输出 JSON 行
        stream: 输出流，默认 stderr
    """
    reset_logging()
    handler = logging.StreamHandler(stream or sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.addHandler(handler)
    _installed.append(handler)
    return handler


def reset_logging() -> None:
    """移除 setup_logging 安装的 handler，其他 handler 不动"""
    root = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()
