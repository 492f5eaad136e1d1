"""编译器包参数生成

emit() 按解析顺序（依赖在前）输出 (包名, 源码路径)，与并发获取的完成顺序无关。
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable
from pathlib import Path

from depot.core.pkg.models import MaterializedPackage


def emit(
    materialized: Iterable[MaterializedPackage],
    order: Iterable[str],
) -> list[tuple[str, Path]]:
    """按 order 排列已落盘的包

    Raises:
        KeyError: order 中的包没有对应的落盘结果
    """
    by_name = {m.name: m for m in materialized}
    order = list(order)
    missing = [name for name in order if name not in by_name]
    if missing:
        raise KeyError(f"以下包尚未落盘: {', '.join(missing)}")
    return [(name, by_name[name].source_path) for name in order]


def format_package_flags(pairs: Iterable[tuple[str, Path]]) -> str:
    """格式化为 `--package <name> <path>` 参数串"""
    return " ".join(
        f"--package {shlex.quote(name)} {shlex.quote(str(path))}"
        for name, path in pairs
    )
