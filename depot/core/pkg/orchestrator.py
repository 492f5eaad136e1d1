"""获取调度器 - 缓存优先 + 并发获取

流程:
  1. 逐个查询本地缓存，命中直接产出 MaterializedPackage
  2. 未命中的包提交到有界线程池并发获取（获取与解析顺序无关）
  3. 单个包失败不影响其他包，全部结束后汇总为 AggregateFetchError
  4. 输出顺序始终与解析顺序一致，与完成先后无关

中断（KeyboardInterrupt）时取消尚未开始的任务，等待进行中的任务结束:
获取策略保证目标目录要么完整要么不存在。
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Collection
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from depot.core.exceptions import AggregateFetchError, DepotError, FetchError
from depot.core.pkg.cache import LocalCache
from depot.core.pkg.models import MaterializedPackage, PackageDescriptor, ResolvedSet
from depot.core.pkg.sources import PackageFetcher

logger = logging.getLogger(__name__)


@dataclass
class FetchStats:
    """最近一次 fetch_all 的统计"""

    hits: int = 0
    fetched: int = 0
    failed: int = 0
    duration: float = 0.0


class FetchOrchestrator:
    """驱动解析结果经过缓存和获取策略，得到全部已落盘的包"""

    def __init__(
        self,
        cache: LocalCache,
        fetcher: PackageFetcher | None = None,
        max_workers: int = 8,
        sources_dir: str = "src",
    ) -> None:
        self.cache = cache
        self.fetcher = fetcher or PackageFetcher()
        self.max_workers = max(1, max_workers)
        self.sources_dir = sources_dir
        self.stats = FetchStats()

    def fetch_all(
        self,
        resolved: ResolvedSet,
        force: bool | Collection[str] = False,
    ) -> list[MaterializedPackage]:
        """获取解析结果中的全部包，按解析顺序返回

        参数:
            resolved: 解析结果
            force: True 时全部重新获取；传入包名集合时只重新获取这些包

        Raises:
            AggregateFetchError: 至少一个包失败，附带所有失败原因和成功的包
        """
        start = time.monotonic()
        self.stats = FetchStats()
        self._invalidate_forced(resolved, force)

        done: dict[str, MaterializedPackage] = {}
        pending: list[PackageDescriptor] = []
        for pkg in resolved:
            path = self.cache.lookup(pkg.name, pkg.identity)
            if path is not None:
                done[pkg.name] = self._materialized(pkg.name, path, cached=True)
                self.stats.hits += 1
            else:
                pending.append(pkg)

        if pending:
            logger.info(
                "需要获取 %d 个包（缓存命中 %d 个）", len(pending), self.stats.hits,
            )
        failures = self._fetch_pending(pending, done)

        self.stats.failed = len(failures)
        self.stats.duration = time.monotonic() - start
        materialized = [done[name] for name in resolved.order if name in done]

        if failures:
            logger.warning(
                "获取汇总: %d 成功, %d 失败 (%s)",
                len(materialized), len(failures), ", ".join(sorted(failures)),
            )
            raise AggregateFetchError(failures, materialized)
        return materialized

    def _invalidate_forced(self, resolved: ResolvedSet, force: bool | Collection[str]) -> None:
        if force is True:
            targets = list(resolved.order)
        elif force:
            targets = [name for name in resolved.order if name in force]
        else:
            return
        for name in targets:
            self.cache.invalidate(name)

    def _fetch_pending(
        self,
        pending: list[PackageDescriptor],
        done: dict[str, MaterializedPackage],
    ) -> dict[str, FetchError]:
        failures: dict[str, FetchError] = {}
        if not pending:
            return failures

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(pending)),
            thread_name_prefix="depot-fetch",
        )
        try:
            futures: list[tuple[PackageDescriptor, Future[MaterializedPackage]]] = [
                (pkg, executor.submit(self._fetch_one, pkg)) for pkg in pending
            ]
            for pkg, future in futures:
                try:
                    done[pkg.name] = future.result()
                    self.stats.fetched += 1
                except FetchError as e:
                    logger.error("获取失败: %s", e)
                    failures[pkg.name] = e
        except KeyboardInterrupt:
            logger.warning("获取被中断，等待进行中的任务结束")
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        finally:
            executor.shutdown(wait=True)
        return failures

    def _fetch_one(self, pkg: PackageDescriptor) -> MaterializedPackage:
        """在工作线程中获取单个包并记录缓存"""
        logger.info("获取: %s (%s %s)", pkg.name, pkg.source.kind, pkg.identity)
        started = time.monotonic()
        try:
            destination = self.cache.reserve(pkg.name, pkg.identity)
            path = self.fetcher.materialize(pkg, destination)
            try:
                self.cache.record(pkg.name, pkg.identity, path)
            except Exception:
                # 未记录的槽位不能留在磁盘上
                shutil.rmtree(path, ignore_errors=True)
                raise
        except FetchError:
            raise
        except (DepotError, OSError, ValueError) as e:
            raise FetchError(pkg.name, str(e), e) from e
        logger.info("完成: %s (%.1f秒)", pkg.name, time.monotonic() - started)
        return self._materialized(pkg.name, path, cached=False)

    def _materialized(self, name: str, path: Path, cached: bool) -> MaterializedPackage:
        return MaterializedPackage(
            name=name, path=path, sources_dir=self.sources_dir, cached=cached,
        )
