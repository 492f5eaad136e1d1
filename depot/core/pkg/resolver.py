"""依赖解析器

从清单的直接依赖出发，沿 dependencies 做深度优先遍历，计算传递闭包:

- 三色标记（未访问 / 访问中 / 已完成）检测环，遇到"访问中"的节点即成环
- 节点完成顺序（后序）即拓扑顺序: 依赖一定排在依赖方之前
- 引用了包集合中不存在的包立即失败，不继续解析其他分支

解析是纯函数，不访问网络和文件系统。遍历按清单顺序和声明顺序进行，
同样的输入总是得到同样的顺序。
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Iterator, Mapping

from depot.core.exceptions import CyclicDependencyError, UnknownPackageError
from depot.core.pkg.models import PackageDescriptor, ResolvedSet

logger = logging.getLogger(__name__)


class _Mark(enum.Enum):
    ACTIVE = "active"
    DONE = "done"


def resolve(
    package_set: Mapping[str, PackageDescriptor],
    roots: Iterable[str],
) -> ResolvedSet:
    """计算 roots 的依赖闭包

    Raises:
        UnknownPackageError: 根或某个依赖不在包集合中
        CyclicDependencyError: 从根可达的子图中存在环，path 首尾相同
    """
    marks: dict[str, _Mark] = {}
    order: list[str] = []
    for root in roots:
        if root not in package_set:
            raise UnknownPackageError(root)
        _visit(root, package_set, marks, order)

    logger.debug("解析完成: %d 个包 (%s)", len(order), ", ".join(order))
    return ResolvedSet(
        packages={name: package_set[name] for name in order},
        order=tuple(order),
    )


def topo_sort(package_set: Mapping[str, PackageDescriptor]) -> list[PackageDescriptor]:
    """整个包集合的拓扑顺序（依赖在前），名称排序保证结果稳定"""
    return list(resolve(package_set, sorted(package_set)))


def _visit(
    root: str,
    package_set: Mapping[str, PackageDescriptor],
    marks: dict[str, _Mark],
    order: list[str],
) -> None:
    if marks.get(root) is _Mark.DONE:
        return

    # 显式栈代替递归，栈内节点即当前遍历路径
    stack: list[tuple[str, Iterator[str]]] = [
        (root, iter(package_set[root].dependencies)),
    ]
    marks[root] = _Mark.ACTIVE

    while stack:
        name, pending = stack[-1]
        for dep in pending:
            mark = marks.get(dep)
            if mark is _Mark.DONE:
                continue
            if mark is _Mark.ACTIVE:
                path = [n for n, _ in stack]
                raise CyclicDependencyError(path[path.index(dep):] + [dep])
            if dep not in package_set:
                raise UnknownPackageError(dep, required_by=name)
            marks[dep] = _Mark.ACTIVE
            stack.append((dep, iter(package_set[dep].dependencies)))
            break
        else:
            stack.pop()
            marks[name] = _Mark.DONE
            order.append(name)
