"""CLI — 初始化与查询"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import click

from depot.cli import _errors, _project
from depot.core.pkg.models import PackageDescriptor
from depot.core.pkg.resolver import topo_sort
from depot.core.project import init_project


def register(group: click.Group) -> None:
    group.add_command(init)
    group.add_command(list_packages)
    group.add_command(tree)


@click.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """在当前目录生成最小项目配置"""
    with _errors():
        created = init_project(Path.cwd(), ctx.obj["config"])
    if not created:
        click.echo("项目配置已存在，未做修改。")
    for path in created:
        click.echo(f"已创建: {path.name}")


@click.command(name="list")
@click.pass_context
def list_packages(ctx: click.Context) -> None:
    """按依赖顺序列出包集合中的全部包"""
    with _errors():
        ordered = topo_sort(_project(ctx, require_manifest=False).package_set)
    if not ordered:
        click.echo("包集合为空。")
        return
    for pkg in ordered:
        deps = ", ".join(pkg.dependencies) or "-"
        click.echo(f"  {pkg.name:24s} [{pkg.source.kind:7s}] {pkg.identity}  deps: {deps}")


@click.command()
@click.pass_context
def tree(ctx: click.Context) -> None:
    """显示清单的依赖树（重复出现的子树标记 *）"""
    with _errors():
        project = _project(ctx)
        resolved = project.resolve()
        roots = list(project.manifest.dependencies) if project.manifest else []
    seen: set[str] = set()
    for root in roots:
        for line in _render(resolved.packages, root, seen):
            click.echo(line)


def _render(
    packages: Mapping[str, PackageDescriptor],
    name: str,
    seen: set[str],
    depth: int = 0,
) -> list[str]:
    indent = "  " * depth
    if name in seen:
        return [f"{indent}{name} *"]
    seen.add(name)
    lines = [f"{indent}{name} ({packages[name].identity})"]
    for dep in packages[name].dependencies:
        lines.extend(_render(packages, dep, seen, depth + 1))
    return lines
