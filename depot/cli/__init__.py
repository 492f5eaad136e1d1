"""depot 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
日志输出到 stderr，stdout 只输出命令结果（sources 的参数串可直接被 shell 捕获）。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

import click

from depot import __version__
from depot.core.config import DEFAULT_CONFIG_FILE, init_config
from depot.core.exceptions import AggregateFetchError, DepotError
from depot.core.project import Project
from depot.utils.logger import setup_logging


def _project(ctx: click.Context, require_manifest: bool = True) -> Project:
    """按全局选项加载当前项目"""
    return Project.load(
        config=ctx.obj["config"],
        package_set_file=ctx.obj["package_set"],
        require_manifest=require_manifest,
    )


@contextmanager
def _errors() -> Iterator[None]:
    """把业务异常转换为 ClickException（非零退出码 + stderr 提示）"""
    try:
        yield
    except AggregateFetchError as e:
        for name, failure in sorted(e.failures.items()):
            hint = "（可重试）" if failure.retryable else ""
            click.echo(f"  失败: {name} [{failure.code}] {failure}{hint}", err=True)
        raise click.ClickException(str(e)) from e
    except DepotError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--package-set", default=None,
    help="包集合文件（默认取配置中的 package_set）",
)
@click.pass_context
def main(ctx: click.Context, package_set: str | None) -> None:
    """depot - 基于包集合的源码依赖管理"""
    setup_logging(
        level=os.getenv("DEPOT_LOG_LEVEL", "INFO"),
        json_output=os.getenv("DEPOT_LOG_JSON", "") == "1",
    )
    with _errors():
        config = init_config(os.getenv("DEPOT_CONFIG", DEFAULT_CONFIG_FILE))
    ctx.obj = {"config": config, "package_set": package_set}


# 注册各领域子命令
from depot.cli.cmd_install import register as _reg_install  # noqa: E402
from depot.cli.cmd_cache import register as _reg_cache  # noqa: E402
from depot.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_install(main)
_reg_cache(main)
_reg_misc(main)
