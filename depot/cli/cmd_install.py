"""CLI — 安装与编译器参数"""

from __future__ import annotations

import click

from depot.cli import _errors, _project
from depot.core.pkg.flags import format_package_flags


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(sources)


@click.command()
@click.option("-f", "--force", is_flag=True, help="忽略缓存，重新获取")
@click.option(
    "--package", "packages", multiple=True,
    help="配合 --force 只重新获取指定包（可重复）",
)
@click.pass_context
def install(ctx: click.Context, force: bool, packages: tuple[str, ...]) -> None:
    """安装全部传递依赖并输出摘要"""
    if packages and not force:
        raise click.UsageError("--package 需要与 --force 一起使用")
    with _errors():
        project = _project(ctx)
        result = project.install(force=set(packages) if packages else force)
    if not result:
        click.echo("没有需要安装的依赖。")
        return
    for pkg in result:
        state = "缓存" if pkg.cached else "新获取"
        click.echo(f"  {pkg.name:24s} [{state}] {pkg.path}")


@click.command()
@click.pass_context
def sources(ctx: click.Context) -> None:
    """安装依赖并输出交给编译器的 --package 参数"""
    with _errors():
        pairs = _project(ctx).sources()
    click.echo(format_package_flags(pairs), nl=False)
