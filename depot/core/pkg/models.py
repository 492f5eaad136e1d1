"""包管理数据模型

数据类:
- GitSource / ArchiveSource: 包来源（二选一）
- PackageDescriptor: 包集合中的单个包
- PackageSet: 包名 -> PackageDescriptor 的只读映射
- Manifest: 项目直接依赖
- ResolvedSet: 解析结果（依赖闭包 + 拓扑顺序）
- CacheEntry / MaterializedPackage: 本地缓存记录与最终产物
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from depot.core.exceptions import DuplicatePackageError, ValidationError

_DIRNAME_CHARS_RE = re.compile(r"^[\w.\-]+$")
_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@\-]+$")


def is_valid_dirname(value: str) -> bool:
    """能否安全地用作单级目录名（拒绝路径分隔符、纯点号、'-' 开头）"""
    return (
        bool(_DIRNAME_CHARS_RE.match(value))
        and value.strip(".") != ""
        and not value.startswith("-")
    )


def validate_name(name: str) -> str:
    if not is_valid_dirname(name):
        raise ValidationError(f"非法的包名: '{name}'")
    return name


def validate_ref(ref: str) -> str:
    # '-' 开头的 ref 会被 git 当成选项
    if not ref or not _SAFE_REF_RE.match(ref) or ref.startswith("-"):
        raise ValidationError(f"ref 包含非法字符: '{ref}'")
    return ref


@dataclass(frozen=True)
class GitSource:
    """git 仓库 + ref（分支、标签或提交哈希，不做区分）"""

    repo_url: str
    ref: str

    def __post_init__(self) -> None:
        if not self.repo_url:
            raise ValidationError("git 来源必须指定 repo_url")
        if self.repo_url.startswith("-"):
            raise ValidationError(f"repo_url 不能以 '-' 开头: '{self.repo_url}'")
        validate_ref(self.ref)

    @property
    def identity(self) -> str:
        return self.ref

    @property
    def kind(self) -> str:
        return "git"


@dataclass(frozen=True)
class ArchiveSource:
    """归档下载地址（tar.gz / tar / zip）"""

    url: str

    def __post_init__(self) -> None:
        if not self.url:
            raise ValidationError("archive 来源必须指定 url")

    @property
    def identity(self) -> str:
        return self.url

    @property
    def kind(self) -> str:
        return "archive"


Source = Union[GitSource, ArchiveSource]


@dataclass(frozen=True)
class PackageDescriptor:
    """包集合中的单个包，解析期间不可变"""

    name: str
    source: Source
    dependencies: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        validate_name(self.name)
        # 保持声明顺序，去重
        object.__setattr__(
            self, "dependencies", tuple(dict.fromkeys(self.dependencies)),
        )

    @property
    def identity(self) -> str:
        """缓存身份标识: git 为 ref 字符串，archive 为 URL"""
        return self.source.identity


class PackageSet(Mapping[str, PackageDescriptor]):
    """包名 -> PackageDescriptor 的只读映射，构造时检查重名"""

    def __init__(self, packages: Iterable[PackageDescriptor] = ()) -> None:
        self._packages: dict[str, PackageDescriptor] = {}
        for pkg in packages:
            if pkg.name in self._packages:
                raise DuplicatePackageError(pkg.name)
            self._packages[pkg.name] = pkg

    def __getitem__(self, name: str) -> PackageDescriptor:
        return self._packages[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._packages)

    def __len__(self) -> int:
        return len(self._packages)

    def __repr__(self) -> str:
        return f"PackageSet({sorted(self._packages)})"


@dataclass
class Manifest:
    """项目清单: 直接依赖（有序、去重）+ 可选编译器版本"""

    dependencies: list[str] = field(default_factory=list)
    compiler: str | None = None

    def __post_init__(self) -> None:
        self.dependencies = list(dict.fromkeys(self.dependencies))


@dataclass(frozen=True)
class ResolvedSet:
    """解析结果

    packages 恰好是从根集合可达的包；order 为拓扑顺序，依赖在前、
    依赖方在后，供获取调度和参数输出使用。
    """

    packages: Mapping[str, PackageDescriptor]
    order: tuple[str, ...]

    def __iter__(self) -> Iterator[PackageDescriptor]:
        return (self.packages[name] for name in self.order)

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, name: object) -> bool:
        return name in self.packages


@dataclass(frozen=True)
class CacheEntry:
    """缓存记录: (包名, 身份标识) -> 已落盘目录"""

    name: str
    identity: str
    path: Path
    fetched_at: str = ""


@dataclass(frozen=True)
class MaterializedPackage:
    """已落盘的包

    path 为包根目录（绝对路径），source_path 为交给编译器的源码目录。
    """

    name: str
    path: Path
    sources_dir: str = "src"
    cached: bool = False

    @property
    def source_path(self) -> Path:
        if not self.sources_dir:
            return self.path
        return self.path / self.sources_dir
