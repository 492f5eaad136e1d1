"""获取调度器测试 - 缓存命中、强制重取、失败汇总、并发上限、输出顺序"""

from __future__ import annotations

from pathlib import Path

import pytest

from depot.core.exceptions import AggregateFetchError, DownloadFailure, ExtractFailure, FetchError
from depot.core.pkg.cache import LocalCache
from depot.core.pkg.models import PackageSet
from depot.core.pkg.orchestrator import FetchOrchestrator
from depot.core.pkg.resolver import resolve
from depot.core.pkg.sources import ArchiveFetcher


@pytest.fixture()
def cache(tmp_path: Path) -> LocalCache:
    return LocalCache(tmp_path / "cache")


@pytest.fixture()
def resolved(make_set):
    ps = make_set({"A": [], "B": ["A"], "C": ["A"], "D": ["B", "C"]})
    return resolve(ps, ["D"])


class TestFetchAll:
    def test_fetches_everything_in_resolution_order(self, cache, resolved, fake_strategy) -> None:
        fetcher = fake_strategy()
        result = FetchOrchestrator(cache, fetcher, max_workers=4).fetch_all(resolved)
        assert [m.name for m in result] == list(resolved.order)
        assert sorted(fetcher.calls) == ["A", "B", "C", "D"]
        for m in result:
            assert (m.source_path / "Lib.mo").exists()
            assert m.path.is_absolute()
            assert not m.cached

    def test_second_run_is_all_cache_hits(self, cache, resolved, fake_strategy) -> None:
        fetcher = fake_strategy()
        orch = FetchOrchestrator(cache, fetcher, max_workers=4)
        first = orch.fetch_all(resolved)
        fetcher.calls.clear()

        second = orch.fetch_all(resolved)
        assert fetcher.calls == []
        assert [m.path for m in second] == [m.path for m in first]
        assert all(m.cached for m in second)
        assert orch.stats.hits == 4
        assert orch.stats.fetched == 0

    def test_cache_survives_new_orchestrator(self, tmp_path, resolved, fake_strategy) -> None:
        FetchOrchestrator(LocalCache(tmp_path / "c"), fake_strategy()).fetch_all(resolved)
        fetcher = fake_strategy()
        FetchOrchestrator(LocalCache(tmp_path / "c"), fetcher).fetch_all(resolved)
        assert fetcher.calls == []

    def test_invalidate_refetches_only_that_package(self, cache, resolved, fake_strategy) -> None:
        fetcher = fake_strategy()
        orch = FetchOrchestrator(cache, fetcher)
        orch.fetch_all(resolved)
        fetcher.calls.clear()

        cache.invalidate("B")
        result = orch.fetch_all(resolved)
        assert fetcher.calls == ["B"]
        assert {m.name: m.cached for m in result} == {"A": True, "B": False, "C": True, "D": True}

    def test_force_all(self, cache, resolved, fake_strategy) -> None:
        fetcher = fake_strategy()
        orch = FetchOrchestrator(cache, fetcher)
        orch.fetch_all(resolved)
        fetcher.calls.clear()

        orch.fetch_all(resolved, force=True)
        assert sorted(fetcher.calls) == ["A", "B", "C", "D"]

    def test_force_named(self, cache, resolved, fake_strategy) -> None:
        fetcher = fake_strategy()
        orch = FetchOrchestrator(cache, fetcher)
        orch.fetch_all(resolved)
        fetcher.calls.clear()

        orch.fetch_all(resolved, force={"C", "not-in-closure"})
        assert fetcher.calls == ["C"]

    def test_changed_identity_refetches(self, cache, make_pkg, fake_strategy) -> None:
        fetcher = fake_strategy()
        orch = FetchOrchestrator(cache, fetcher)
        orch.fetch_all(resolve(PackageSet([make_pkg("A", ref="v1")]), ["A"]))
        fetcher.calls.clear()

        result = orch.fetch_all(resolve(PackageSet([make_pkg("A", ref="v2")]), ["A"]))
        assert fetcher.calls == ["A"]
        assert result[0].path.name == "v2"

    def test_empty_resolution(self, cache, make_set, fake_strategy) -> None:
        assert FetchOrchestrator(cache, fake_strategy()).fetch_all(resolve(make_set({}), [])) == []


class TestFailures:
    def test_failures_collected_siblings_continue(self, cache, resolved, fake_strategy) -> None:
        fetcher = fake_strategy(fail={"B", "C"})
        orch = FetchOrchestrator(cache, fetcher, max_workers=2)
        with pytest.raises(AggregateFetchError) as exc:
            orch.fetch_all(resolved)

        err = exc.value
        assert set(err.failures) == {"B", "C"}
        assert isinstance(err.failures["B"], DownloadFailure)
        assert {m.name for m in err.materialized} == {"A", "D"}
        assert cache.lookup("A", "v1.0.0") is not None
        assert orch.stats.failed == 2

    def test_failed_package_leaves_no_trace(self, cache, resolved, fake_strategy) -> None:
        """获取中途失败: 既没有缓存记录，也没有磁盘目录"""
        with pytest.raises(AggregateFetchError):
            FetchOrchestrator(cache, fake_strategy(fail={"C"})).fetch_all(resolved)
        assert cache.lookup("C", "v1.0.0") is None
        assert cache.get("C") is None
        assert not cache.slot_path("C", "v1.0.0").exists()
        assert [p.name for p in (cache.root / "C").iterdir()] == []

    def test_retry_after_failure_fetches_only_broken(self, cache, resolved, fake_strategy) -> None:
        with pytest.raises(AggregateFetchError):
            FetchOrchestrator(cache, fake_strategy(fail={"C"})).fetch_all(resolved)

        fetcher = fake_strategy()
        result = FetchOrchestrator(cache, fetcher).fetch_all(resolved)
        assert fetcher.calls == ["C"]
        assert [m.name for m in result] == list(resolved.order)

    def test_corrupt_archive_atomicity(self, cache, archive_pkg, tmp_path, local_downloader) -> None:
        pkg = archive_pkg("broken")
        junk = tmp_path / "junk"
        junk.write_bytes(b"\x00garbage")
        orch = FetchOrchestrator(cache, ArchiveFetcher(downloader=local_downloader({pkg.source.url: junk})))
        with pytest.raises(AggregateFetchError) as exc:
            orch.fetch_all(resolve(PackageSet([pkg]), ["broken"]))
        assert isinstance(exc.value.failures["broken"], ExtractFailure)
        assert cache.lookup("broken", pkg.identity) is None
        assert not cache.slot_path("broken", pkg.identity).exists()

    def test_record_failure_removes_slot(self, tmp_path, make_set, fake_strategy) -> None:
        """落盘成功但记录失败: 槽位目录被删除，不留未记录的内容"""

        class ReadOnlyMarkerCache(LocalCache):
            def record(self, name, identity, path):  # type: ignore[no-untyped-def]
                raise OSError("marker file not writable")

        cache = ReadOnlyMarkerCache(tmp_path / "cache")
        with pytest.raises(AggregateFetchError) as exc:
            FetchOrchestrator(cache, fake_strategy()).fetch_all(resolve(make_set({"A": []}), ["A"]))
        assert isinstance(exc.value.failures["A"].cause, OSError)
        assert not cache.slot_path("A", "v1.0.0").exists()
        assert list((cache.root / "A").iterdir()) == []

    def test_unexpected_errors_wrapped(self, cache, make_set) -> None:
        class Exploding:
            def materialize(self, pkg, destination):  # type: ignore[no-untyped-def]
                raise PermissionError("read-only filesystem")

        with pytest.raises(AggregateFetchError) as exc:
            FetchOrchestrator(cache, Exploding()).fetch_all(resolve(make_set({"A": []}), ["A"]))  # type: ignore[arg-type]
        failure = exc.value.failures["A"]
        assert type(failure) is FetchError
        assert isinstance(failure.cause, PermissionError)


class TestConcurrency:
    def test_worker_bound(self, cache, make_set, fake_strategy) -> None:
        ps = make_set({f"p{i}": [] for i in range(12)})
        fetcher = fake_strategy(delays={f"p{i}": 0.05 for i in range(12)})
        FetchOrchestrator(cache, fetcher, max_workers=3).fetch_all(resolve(ps, sorted(ps)))
        assert len(fetcher.calls) == 12
        assert 1 < fetcher.max_active <= 3

    def test_output_order_independent_of_completion(self, cache, make_set, fake_strategy) -> None:
        ps = make_set({"a": [], "b": ["a"], "c": ["b"]})
        resolved = resolve(ps, ["c"])
        # 依赖最慢完成
        fetcher = fake_strategy(delays={"a": 0.2, "b": 0.1, "c": 0.0})
        result = FetchOrchestrator(cache, fetcher, max_workers=3).fetch_all(resolved)
        assert [m.name for m in result] == ["a", "b", "c"]
