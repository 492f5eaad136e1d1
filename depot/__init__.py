"""depot - 基于包集合（package set）的源码依赖管理工具"""

__version__ = "0.4.0"
