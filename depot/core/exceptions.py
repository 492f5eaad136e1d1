"""统一异常体系

所有业务异常继承 DepotError，CLI 层据此输出友好提示并返回非零退出码。

- 结构性错误（ResolutionError 及其子类）: 包集合本身不可用，直接中止，不重试
- 获取错误（FetchError 及其子类）: 按包收集，不因单个失败中止其他包
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from depot.core.pkg.models import MaterializedPackage


class DepotError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(DepotError):
    """配置文件或清单缺失、内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(DepotError):
    """输入数据校验失败（包名、ref、URL 等）"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


# =========================================================================
# 解析错误（结构性，致命）
# =========================================================================

class ResolutionError(DepotError):
    """依赖解析失败"""

    code = "RESOLUTION_ERROR"


class DuplicatePackageError(ResolutionError):
    """同一包集合中出现重名包"""

    code = "DUPLICATE_PACKAGE"

    def __init__(self, name: str) -> None:
        super().__init__(f"包集合中存在重名包: '{name}'")
        self.name = name


class UnknownPackageError(ResolutionError):
    """清单或某个包引用了包集合中不存在的包"""

    code = "UNKNOWN_PACKAGE"

    def __init__(self, name: str, required_by: str | None = None) -> None:
        source = f"'{required_by}' 依赖的" if required_by else "清单中的"
        super().__init__(f"{source}包 '{name}' 不在包集合中")
        self.name = name
        self.required_by = required_by


class CyclicDependencyError(ResolutionError):
    """依赖图中存在环，path 首尾为同一个包"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, path: list[str]) -> None:
        super().__init__(f"检测到循环依赖: {' -> '.join(path)}")
        self.path = path


# =========================================================================
# 获取错误（按包收集）
# =========================================================================

class FetchError(DepotError):
    """单个包获取失败，cause 保留底层传输/解压异常"""

    code = "FETCH_ERROR"
    retryable = False

    def __init__(
        self,
        package: str,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(f"{package}: {message}")
        self.package = package
        self.cause = cause


class VcsFailure(FetchError):
    """git clone / checkout 失败（仓库不存在、ref 不存在、网络中断）"""

    code = "VCS_FAILURE"
    retryable = True


class DownloadFailure(FetchError):
    """归档下载失败，通常是暂时性网络问题"""

    code = "DOWNLOAD_FAILURE"
    retryable = True


class ExtractFailure(FetchError):
    """归档损坏或格式不兼容，重试无意义"""

    code = "EXTRACT_FAILURE"


class AggregateFetchError(DepotError):
    """批量获取结束后仍有失败的包

    failures 列出每个失败包及其原因；materialized 是同一轮中成功的包，
    调用方可据此只重试失败的子集。
    """

    code = "AGGREGATE_FETCH_ERROR"

    def __init__(
        self,
        failures: dict[str, FetchError],
        materialized: list[MaterializedPackage] | None = None,
    ) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"{len(failures)} 个包获取失败: {names}")
        self.failures = failures
        self.materialized = materialized or []
