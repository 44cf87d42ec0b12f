"""depforge - 原生依赖库增量构建与原子安装编排器"""

__version__ = "0.3.0"
