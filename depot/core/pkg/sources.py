"""包获取策略 - git / archive

职责:
- GitFetcher: clone 仓库并 checkout 到指定 ref
- ArchiveFetcher: 下载归档并解压
- PackageFetcher: 按包来源类型分派到对应策略

落盘保证: 先在目标目录旁的私有暂存目录中完成获取，成功后一次 rename 到位。
任何失败都只会留下"目标目录不存在"，不会出现半成品目录。
"""

from __future__ import annotations

import abc
import bz2
import gzip
import http.client
import logging
import lzma
import os
import shutil
import subprocess
import tarfile
import tempfile
import urllib.error
import urllib.request
import zipfile
import zlib
from pathlib import Path
from typing import Protocol

from depot.core.exceptions import (
    DownloadFailure,
    ExtractFailure,
    FetchError,
    ValidationError,
    VcsFailure,
)
from depot.core.pkg.models import ArchiveSource, GitSource, PackageDescriptor
from depot.utils.net import is_github_url, validate_url_scheme
from depot.utils.shell import CommandExecutor, CommandResult, LocalExecutor

logger = logging.getLogger(__name__)

STAGING_PREFIX = ".staging-"
_USER_AGENT = "depot"
_CHUNK_SIZE = 1024 * 1024

# 压缩格式魔数 -> 流式解压器
_COMPRESSED_OPENERS = (
    (b"\x1f\x8b", gzip.open),
    (b"BZh", bz2.open),
    (b"\xfd7zXZ\x00", lzma.open),
)


class Downloader(Protocol):
    """下载器协议: 把 url 内容完整写入 dest，失败抛 OSError"""

    def __call__(self, url: str, dest: Path, timeout: int) -> None:
        ...


def download_file(url: str, dest: Path, timeout: int) -> None:
    """默认下载器（urllib）"""
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    with urllib.request.urlopen(req, timeout=timeout) as resp, open(dest, "wb") as f:  # nosec B310
        shutil.copyfileobj(resp, f)


class FetchStrategy(abc.ABC):
    """获取策略基类，负责暂存目录与原子落盘"""

    def materialize(self, pkg: PackageDescriptor, destination: Path) -> Path:
        """把包获取到 destination，返回 destination

        Raises:
            FetchError: 获取失败，此时 destination 不存在
        """
        destination = Path(destination)
        if destination.exists():
            raise FetchError(pkg.name, f"目标目录已存在: {destination}")

        destination.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(
            prefix=f"{STAGING_PREFIX}{pkg.name}-", dir=str(destination.parent),
        ))
        try:
            root = self._fetch_into(pkg, staging)
            try:
                os.rename(root, destination)
            except OSError as e:
                raise FetchError(
                    pkg.name, f"无法移动到目标目录 {destination}: {e}", e,
                ) from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info("已落盘: %s -> %s", pkg.name, destination)
        return destination

    @abc.abstractmethod
    def _fetch_into(self, pkg: PackageDescriptor, staging: Path) -> Path:
        """在 staging 内完成获取，返回要移动到目标位置的目录"""


class ArchiveFetcher(FetchStrategy):
    """归档来源: 下载 -> 校验格式 -> 解压"""

    def __init__(self, downloader: Downloader | None = None, timeout: int = 120) -> None:
        self._downloader = downloader or download_file
        self.timeout = timeout

    def _fetch_into(self, pkg: PackageDescriptor, staging: Path) -> Path:
        if not isinstance(pkg.source, ArchiveSource):
            raise ValidationError(f"包 '{pkg.name}' 不是 archive 来源")
        return self.fetch_url(pkg.name, pkg.source.url, staging)

    def fetch_url(self, name: str, url: str, workdir: Path) -> Path:
        """下载 url 并解压到 workdir 下，返回包根目录"""
        workdir.mkdir(parents=True, exist_ok=True)
        archive = workdir / "download"

        logger.info("下载归档: %s <- %s", name, url)
        try:
            validate_url_scheme(url, context=f"archive {name}")
            self._downloader(url, archive, self.timeout)
        except ValidationError as e:
            raise DownloadFailure(name, str(e), e) from e
        except (OSError, http.client.HTTPException) as e:
            raise DownloadFailure(name, f"下载失败: {url} - {e}", e) from e

        unpacked = workdir / "unpacked"
        self._extract(name, archive, unpacked)
        archive.unlink(missing_ok=True)
        return self._archive_root(name, unpacked)

    @staticmethod
    def _extract(name: str, archive: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        try:
            if tarfile.is_tarfile(archive):
                ArchiveFetcher._verify_stream(name, archive)
                with tarfile.open(archive) as tf:
                    tf.extractall(path=str(dest), filter="data")  # noqa: S202
            elif zipfile.is_zipfile(archive):
                with zipfile.ZipFile(archive) as zf:
                    bad = zf.testzip()
                    if bad is not None:
                        raise ExtractFailure(name, f"zip 校验失败: {bad}")
                    zf.extractall(path=str(dest))  # noqa: S202
            else:
                raise ExtractFailure(name, "下载内容不是可识别的 tar/zip 归档")
        except (tarfile.TarError, zipfile.BadZipFile, zlib.error, lzma.LZMAError,
                EOFError, OSError) as e:
            raise ExtractFailure(name, f"解压失败: {e}", e) from e

    @staticmethod
    def _verify_stream(name: str, archive: Path) -> None:
        """完整解压一遍压缩流以触发 CRC / 长度校验

        tarfile 读到归档结束块就停止，不会读到压缩流末尾的校验和，
        损坏的下载可能被当成正常内容解压出来。
        """
        with open(archive, "rb") as f:
            magic = f.read(6)
        for prefix, opener in _COMPRESSED_OPENERS:
            if magic.startswith(prefix):
                break
        else:
            return
        try:
            with opener(archive, "rb") as stream:
                while stream.read(_CHUNK_SIZE):
                    pass
        except (OSError, EOFError, zlib.error, lzma.LZMAError) as e:
            raise ExtractFailure(name, f"压缩流校验失败: {e}", e) from e

    @staticmethod
    def _archive_root(name: str, unpacked: Path) -> Path:
        """归档只含一个顶层目录时（GitHub tarball 布局）以该目录为包根"""
        entries = list(unpacked.iterdir())
        if not entries:
            raise ExtractFailure(name, "归档为空")
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return unpacked


class GitFetcher(FetchStrategy):
    """git 来源: clone + checkout

    GitHub 仓库在 prefer_tarball 时先尝试下载 ref 对应的 archive tarball，
    失败再回退到 git clone。
    """

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        timeout: int = 600,
        archive: ArchiveFetcher | None = None,
        prefer_tarball: bool = True,
    ) -> None:
        self._executor = executor or LocalExecutor()
        self.timeout = timeout
        self._archive = archive
        self.prefer_tarball = prefer_tarball

    def _fetch_into(self, pkg: PackageDescriptor, staging: Path) -> Path:
        if not isinstance(pkg.source, GitSource):
            raise ValidationError(f"包 '{pkg.name}' 不是 git 来源")
        src = pkg.source

        if self.prefer_tarball and self._archive and is_github_url(src.repo_url):
            workdir = staging / "tarball"
            try:
                return self._archive.fetch_url(pkg.name, self.tarball_url(src), workdir)
            except FetchError as e:
                logger.warning("tarball 下载失败，改用 git clone: %s (%s)", pkg.name, e)
                shutil.rmtree(workdir, ignore_errors=True)

        return self._clone(pkg.name, src, staging / "repo")

    @staticmethod
    def tarball_url(src: GitSource) -> str:
        repo = src.repo_url.rstrip("/").removesuffix(".git")
        return f"{repo}/archive/{src.ref}.tar.gz"

    def _clone(self, name: str, src: GitSource, dest: Path) -> Path:
        logger.info("克隆仓库: %s <- %s@%s", name, src.repo_url, src.ref)
        # 分支/标签可以浅克隆；提交哈希不行，回退完整 clone + checkout
        r = self._git(
            name,
            ["git", "clone", "--quiet", "--depth", "1", "--branch", src.ref,
             "--", src.repo_url, str(dest)],
        )
        if r.success:
            return dest

        logger.debug("浅克隆失败，完整 clone: %s (%s)", name, r.stderr.strip()[:200])
        shutil.rmtree(dest, ignore_errors=True)
        r = self._git(name, ["git", "clone", "--quiet", "--", src.repo_url, str(dest)])
        if not r.success:
            raise VcsFailure(
                name, f"git clone 失败 (rc={r.returncode}): {r.stderr.strip()[:500]}",
            )

        r = self._git(
            name,
            ["git", "-c", "advice.detachedHead=false", "checkout", "--quiet", src.ref],
            cwd=dest,
        )
        if not r.success:
            raise VcsFailure(
                name,
                f"git checkout {src.ref} 失败 (rc={r.returncode}): {r.stderr.strip()[:500]}",
            )
        return dest

    def _git(self, name: str, cmd: list[str], cwd: Path | None = None) -> CommandResult:
        try:
            return self._executor.execute(
                cmd, cwd=str(cwd) if cwd else ".", timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise VcsFailure(name, f"{' '.join(cmd[:2])} 超时（{self.timeout}秒）", e) from e
        except (OSError, subprocess.SubprocessError) as e:
            raise VcsFailure(name, f"无法执行 {cmd[0]}: {e}", e) from e


class PackageFetcher:
    """按包来源类型分派到 GitFetcher / ArchiveFetcher"""

    def __init__(
        self,
        git: GitFetcher | None = None,
        archive: ArchiveFetcher | None = None,
    ) -> None:
        self.archive = archive or ArchiveFetcher()
        self.git = git or GitFetcher(archive=self.archive)

    def strategy_for(self, pkg: PackageDescriptor) -> FetchStrategy:
        if isinstance(pkg.source, GitSource):
            return self.git
        if isinstance(pkg.source, ArchiveSource):
            return self.archive
        raise ValidationError(f"不支持的来源类型: {type(pkg.source).__name__}")

    def materialize(self, pkg: PackageDescriptor, destination: Path) -> Path:
        return self.strategy_for(pkg).materialize(pkg, destination)
