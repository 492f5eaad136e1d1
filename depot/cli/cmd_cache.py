"""CLI — 本地缓存管理"""

from __future__ import annotations

import click

from depot.cli import _errors, _project


def register(group: click.Group) -> None:
    group.add_command(cache)


@click.group()
def cache() -> None:
    """查看和清理本地包缓存"""


@cache.command(name="list")
@click.pass_context
def list_cache(ctx: click.Context) -> None:
    """列出已缓存的包"""
    with _errors():
        entries = _project(ctx, require_manifest=False).cache.entries()
    if not entries:
        click.echo("缓存为空。")
        return
    for entry in entries:
        click.echo(f"  {entry.name:24s} {entry.identity:40s} {entry.fetched_at}")


@cache.command(name="clean")
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def clean(ctx: click.Context, names: tuple[str, ...]) -> None:
    """清除指定包的缓存，下次安装时重新获取"""
    with _errors():
        local = _project(ctx, require_manifest=False).cache
        for name in names:
            removed = local.invalidate(name)
            click.echo(f"  {name}: {'已清除' if removed else '未缓存'}")


@cache.command(name="reset")
@click.confirmation_option(prompt="确定删除整个缓存目录？")
@click.pass_context
def reset(ctx: click.Context) -> None:
    """删除整个缓存目录"""
    with _errors():
        count = _project(ctx, require_manifest=False).cache.invalidate_all()
    click.echo(f"已清除 {count} 个包的缓存。")
