"""子进程执行工具 — git 等外部命令的统一调用入口

通过 CommandExecutor 协议抽象子进程执行，获取策略（GitFetcher）只依赖协议，
测试时注入假执行器即可，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议

    约定: 命令无法启动（可执行文件不存在）或超时时抛 OSError /
    subprocess.SubprocessError；命令本身失败通过 returncode 表达。
    """

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        logger.debug("执行: %s (cwd=%s)", " ".join(cmd), cwd)
        r = subprocess.run(
            cmd, capture_output=True, text=True,
            cwd=cwd, env=env, check=False, timeout=timeout,
        )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )
