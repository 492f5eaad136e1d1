"""测试共享 fixture — 包定义工厂、假获取策略、归档构造

假获取策略继承真实的 FetchStrategy，因此暂存目录 + rename 的落盘逻辑
在测试中同样生效，只是把网络/git 替换为本地写文件。
"""

from __future__ import annotations

import io
import tarfile
import threading
import time
import zipfile
from pathlib import Path
from typing import Callable

import pytest

from depot.core.exceptions import DownloadFailure
from depot.core.pkg.models import ArchiveSource, GitSource, PackageDescriptor, PackageSet
from depot.core.pkg.sources import FetchStrategy


def _pkg(name: str, deps: list[str] | tuple[str, ...] = (), ref: str = "v1.0.0") -> PackageDescriptor:
    return PackageDescriptor(
        name=name,
        source=GitSource(repo_url=f"https://git.example.com/{name}.git", ref=ref),
        dependencies=tuple(deps),
    )


@pytest.fixture()
def make_pkg() -> Callable[..., PackageDescriptor]:
    """make_pkg("b", ["a"]) -> git 来源的包定义"""
    return _pkg


@pytest.fixture()
def make_set() -> Callable[[dict[str, list[str]]], PackageSet]:
    """make_set({"A": [], "B": ["A"]}) -> PackageSet"""
    def factory(graph: dict[str, list[str]]) -> PackageSet:
        return PackageSet(_pkg(name, deps) for name, deps in graph.items())
    return factory


@pytest.fixture()
def archive_pkg() -> Callable[..., PackageDescriptor]:
    def factory(name: str, url: str = "", deps: tuple[str, ...] = ()) -> PackageDescriptor:
        return PackageDescriptor(
            name=name,
            source=ArchiveSource(url=url or f"https://dl.example.com/{name}.tar.gz"),
            dependencies=deps,
        )
    return factory


class FakeStrategy(FetchStrategy):
    """本地写文件的获取策略

    fail: 这些包在写入部分文件后失败（模拟获取中途出错）
    delays: 包名 -> 睡眠秒数，用于打乱完成顺序
    """

    def __init__(
        self,
        fail: set[str] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.fail = fail or set()
        self.delays = delays or {}
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _fetch_into(self, pkg: PackageDescriptor, staging: Path) -> Path:
        with self._lock:
            self.calls.append(pkg.name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delays.get(pkg.name, 0.01))
            root = staging / "pkg"
            (root / "src").mkdir(parents=True)
            (root / "src" / "Lib.mo").write_text(f"// {pkg.name}@{pkg.identity}\n")
            if pkg.name in self.fail:
                raise DownloadFailure(pkg.name, "模拟网络中断")
            (root / "README.md").write_text(pkg.name)
            return root
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture()
def fake_strategy() -> Callable[..., FakeStrategy]:
    return FakeStrategy


def _tar_bytes(files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def _zip_bytes(files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture()
def make_archive(tmp_path: Path) -> Callable[..., Path]:
    """make_archive({"pkg-1.0/src/Lib.mo": "..."}, fmt="tar") -> 本地归档路径"""
    counter = iter(range(10_000))

    def factory(files: dict[str, str], fmt: str = "tar") -> Path:
        path = tmp_path / "archives" / f"archive-{next(counter)}.{fmt}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_tar_bytes(files) if fmt == "tar" else _zip_bytes(files))
        return path

    return factory


@pytest.fixture()
def local_downloader() -> Callable[[dict[str, Path]], Callable[[str, Path, int], None]]:
    """把 URL 映射到本地文件的下载器；未映射的 URL 抛 OSError"""
    def factory(mapping: dict[str, Path]) -> Callable[[str, Path, int], None]:
        def download(url: str, dest: Path, timeout: int) -> None:
            if url not in mapping:
                raise OSError(f"404 Not Found: {url}")
            dest.write_bytes(mapping[url].read_bytes())
        return download
    return factory
