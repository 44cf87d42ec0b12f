"""依赖清单

清单描述每个依赖的来源、期望签名和产物标记，格式:

    dependencies:
      vtk:
        version: "9.5.2"
        url: https://github.com/Kitware/VTK.git
        ref: "v{version}"
        install_name: "vtk-{version}"
        signature:            # 影响正确性的开关，参与兼容性判断
          VTK_GROUP_ENABLE_Qt: "YES"
        configure_args:       # 仅传给 configure，不参与判断
          CMAKE_BUILD_TYPE: Release
        install_markers: ["lib/cmake/vtk*"]
        env_hints:
          VTK_DIR: "{install}/lib/cmake/vtk*"

configure_args 中的占位符:
  {python}         当前解释器路径
  {qt_cmake_dir}   由 --qt-dir 推导的 Qt6 CMake 目录；无法推导时该参数被丢弃

未指定 --manifest 时使用内置清单（VTK + Netgen）。
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from depforge.core.config import Config
from depforge.core.exceptions import ConfigError
from depforge.core.models import ConfigurationSignature, Dependency
from depforge.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

_QT_PLACEHOLDER = "{qt_cmake_dir}"


def builtin_manifest() -> dict[str, Any]:
    """内置清单: 带 Qt6 支持的 VTK + 带 Python 绑定、无 GUI 的 Netgen"""
    if sys.platform == "darwin":
        netgen_prefix_hint = "{install}/Contents/Resources:$CMAKE_PREFIX_PATH"
    else:
        netgen_prefix_hint = "{install}:$CMAKE_PREFIX_PATH"
    return {
        "dependencies": {
            "vtk": {
                "description": "VTK 可视化库（Qt6 GUI 集成）",
                "version": "9.5.2",
                "url": "https://github.com/Kitware/VTK.git",
                "ref": "v{version}",
                "install_name": "vtk-{version}",
                "signature": {
                    "VTK_GROUP_ENABLE_Qt": "YES",
                    "VTK_MODULE_ENABLE_VTK_GUISupportQt": "YES",
                },
                "configure_args": {
                    "CMAKE_BUILD_TYPE": "Release",
                    "Qt6_DIR": _QT_PLACEHOLDER,
                    "VTK_WRAP_PYTHON": "OFF",
                    "VTK_ENABLE_TESTING": "OFF",
                    "VTK_DEFAULT_RENDERING_BACKEND": "OpenGL2",
                    "CMAKE_INSTALL_RPATH": "$ORIGIN/..",
                },
                "install_markers": ["lib/cmake/vtk*", "lib64/cmake/vtk*"],
                "env_hints": {
                    "VTK_DIR": "{install}/lib/cmake/vtk*",
                    "CMAKE_PREFIX_PATH": "{install}:$CMAKE_PREFIX_PATH",
                },
            },
            "netgen": {
                "description": "Netgen 四面体网格库（Python 绑定，无 GUI）",
                "version": "latest",
                "url": "https://github.com/NGSolve/netgen.git",
                "ref": "",
                "signature": {
                    "USE_PYTHON": "ON",
                    "USE_GUI": "OFF",
                },
                "configure_args": {
                    "CMAKE_BUILD_TYPE": "Release",
                    "USE_MPI": "ON",
                    "PYTHON_EXECUTABLE": "{python}",
                },
                "install_markers": ["lib", "lib64", "Contents/MacOS"],
                "env_hints": {
                    "CMAKE_PREFIX_PATH": netgen_prefix_hint,
                },
            },
        },
    }


def find_qt_cmake_dir(qt_dir: str) -> Path | None:
    """在 Qt 安装目录中查找 lib/cmake/Qt6，兼容 <qt_dir>/6/... 布局"""
    if not qt_dir:
        return None
    root = Path(qt_dir)
    for candidate in (root / "lib" / "cmake" / "Qt6", root / "6" / "lib" / "cmake" / "Qt6"):
        if candidate.is_dir():
            return candidate
    return None


def _as_pairs(value: Any, what: str, name: str) -> tuple[tuple[str, str], ...]:
    if value is None:
        return ()
    if not isinstance(value, dict):
        raise ConfigError(f"依赖 '{name}' 的 {what} 必须是映射")
    return tuple((str(k), "" if v is None else str(v)) for k, v in value.items())


def _render_configure_args(
    name: str, args: tuple[tuple[str, str], ...], qt_cmake_dir: Path | None,
) -> tuple[tuple[str, str], ...]:
    rendered: list[tuple[str, str]] = []
    for key, value in args:
        if _QT_PLACEHOLDER in value:
            if qt_cmake_dir is None:
                logger.warning(
                    "%s: 无法推导 Qt6 CMake 目录，跳过 %s（可通过 --qt-dir 指定包含 lib/cmake/Qt6 的 Qt 安装）",
                    name, key,
                )
                continue
            value = value.replace(_QT_PLACEHOLDER, str(qt_cmake_dir))
        rendered.append((key, value.replace("{python}", sys.executable)))
    return tuple(rendered)


def parse_dependency(
    name: str, info: dict[str, Any], config: Config,
    qt_cmake_dir: Path | None = None,
) -> Dependency:
    """把清单条目 + 配置覆盖项转换为 Dependency"""
    if not isinstance(info, dict):
        raise ConfigError(f"依赖 '{name}' 的定义必须是映射")
    url = info.get("url", "")
    if not url:
        raise ConfigError(f"依赖 '{name}' 未定义 url")

    version = str(config.versions.get(name) or info.get("version", "latest"))
    ref = str(config.refs.get(name) or info.get("ref") or "")

    signature_src = info.get("signature") or {}
    if not isinstance(signature_src, dict):
        raise ConfigError(f"依赖 '{name}' 的 signature 必须是映射")
    signature = ConfigurationSignature.from_mapping(signature_src)
    signature = signature.merged(config.overrides.get(name, {}))

    markers = info.get("install_markers") or []
    if isinstance(markers, str):
        markers = [markers]

    return Dependency(
        name=name,
        version=version,
        repo_url=str(url),
        prefix=Path(config.prefix).resolve(),
        ref=ref,
        signature=signature,
        configure_args=_render_configure_args(
            name, _as_pairs(info.get("configure_args"), "configure_args", name),
            qt_cmake_dir,
        ),
        install_markers=tuple(str(m) for m in markers),
        install_name=str(info.get("install_name") or "{name}"),
        env_hints=_as_pairs(info.get("env_hints"), "env_hints", name),
        description=str(info.get("description", "")),
    )


def load_dependencies(config: Config) -> list[Dependency]:
    """加载清单并应用配置覆盖，返回全部依赖（跳过列表由编排器处理）"""
    if config.manifest:
        try:
            data = load_yaml(config.manifest, required=True)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"依赖清单读取失败: {config.manifest}: {e}") from e
    else:
        data = builtin_manifest()

    entries = data.get("dependencies") or {}
    if not isinstance(entries, dict):
        raise ConfigError("依赖清单的 dependencies 段必须是映射")

    referenced = set(config.skip) | set(config.versions) | set(config.refs) | set(config.overrides)
    unknown = sorted(referenced - set(entries))
    if unknown:
        raise ConfigError(
            f"未知依赖: {', '.join(unknown)}。可用: {', '.join(entries)}"
        )

    qt_cmake_dir = find_qt_cmake_dir(config.qt_dir)
    if config.qt_dir:
        if qt_cmake_dir is None:
            logger.warning("Qt 目录 %s 下未找到 lib/cmake/Qt6", config.qt_dir)
        else:
            logger.info("使用 Qt CMake 目录: %s", qt_cmake_dir)

    deps = [
        parse_dependency(name, info or {}, config, qt_cmake_dir)
        for name, info in entries.items()
    ]
    logger.info("已加载 %d 个依赖", len(deps))
    return deps
