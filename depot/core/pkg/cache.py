"""本地包缓存

缓存策略:
  - 以 (包名, 身份标识) 为缓存键；git 包的身份是 ref 字符串，archive 包是 URL
  - 身份是结构性的而非内容哈希: 分支名移动后缓存不会自动失效，
    需要调用方显式 invalidate（install --force）
  - 每个包独占一个槽位目录，并发写入不同包互不干扰

目录布局:

    <root>/
      <name>/
        .entry.yml       # 标记文件: identity / slot / fetched_at
        <slot>/          # 最近一次记录的身份对应的完整内容
        .staging-*       # 获取中的暂存目录（见 sources.FetchStrategy）

只有写入了标记文件的槽位才算命中。未记录的槽位在下次 reserve 时清理；
暂存目录超过 STALE_STAGING_SECONDS 未更新才会在打开缓存时清理，
避免删掉另一个进程正在使用的暂存目录。
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import yaml

from depot.core.pkg.models import CacheEntry, is_valid_dirname, validate_name
from depot.core.pkg.sources import STAGING_PREFIX
from depot.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

ENTRY_FILE = ".entry.yml"

# 超过该时长未更新的暂存目录视为中断遗留；未超时的可能属于另一个正在获取的进程
STALE_STAGING_SECONDS = 6 * 3600


def slot_dirname(identity: str) -> str:
    """身份标识 -> 槽位目录名；URL 等不能直接做目录名的取哈希"""
    if is_valid_dirname(identity) and not identity.startswith("."):
        return identity
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]
    return f"h-{digest}"


class LocalCache:
    """按包名分槽位的本地缓存

    每次调用（一次 CLI 调用或一个测试）显式构造一个实例并传给使用方，
    不使用全局单例。
    """

    def __init__(self, root: str | Path, stale_staging_seconds: float = STALE_STAGING_SECONDS) -> None:
        self.root = Path(root).absolute()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._index: dict[str, CacheEntry | None] = {}
        self._purge_staging(stale_staging_seconds)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def lookup(self, name: str, identity: str) -> Path | None:
        """命中返回已落盘目录，不访问网络"""
        entry = self.get(name)
        if entry is None or entry.identity != identity:
            return None
        if not entry.path.is_dir():
            logger.warning("缓存记录指向的目录已丢失: %s -> %s", name, entry.path)
            with self._lock:
                self._index.pop(name, None)
            return None
        logger.debug("缓存命中: %s@%s -> %s", name, identity, entry.path)
        return entry.path

    def get(self, name: str) -> CacheEntry | None:
        """读取包的缓存记录（不校验目录是否存在）"""
        validate_name(name)
        with self._lock:
            if name not in self._index:
                self._index[name] = self._read_entry(name)
            return self._index[name]

    def entries(self) -> list[CacheEntry]:
        result = []
        for child in sorted(self.root.iterdir()):
            if child.is_dir() and (child / ENTRY_FILE).is_file():
                entry = self.get(child.name)
                if entry is not None:
                    result.append(entry)
        return result

    def slot_path(self, name: str, identity: str) -> Path:
        return self.root / validate_name(name) / slot_dirname(identity)

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    def reserve(self, name: str, identity: str) -> Path:
        """返回可供获取的空槽位路径

        清理未记录的残留槽位（例如上次在 rename 之后、记录之前被中断）。
        """
        path = self.slot_path(name, identity)
        if path.exists() and self.lookup(name, identity) is None:
            logger.info("清理未记录的槽位: %s", path)
            shutil.rmtree(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def record(self, name: str, identity: str, path: Path) -> CacheEntry:
        """获取成功后持久化记录，并清理该包旧身份的槽位"""
        path = Path(path).absolute()
        expected = self.slot_path(name, identity)
        if path != expected:
            raise ValueError(f"缓存路径不在 {name} 的槽位内: {path} (期望 {expected})")
        if not path.is_dir():
            raise FileNotFoundError(f"待记录的目录不存在: {path}")

        entry = CacheEntry(
            name=name,
            identity=identity,
            path=path,
            fetched_at=datetime.now(tz=timezone.utc).isoformat(),
        )
        save_yaml(path.parent / ENTRY_FILE, {
            "name": name,
            "identity": identity,
            "slot": path.name,
            "fetched_at": entry.fetched_at,
        })
        with self._lock:
            self._index[name] = entry

        for child in path.parent.iterdir():
            if child.is_dir() and child != path and not child.name.startswith("."):
                shutil.rmtree(child, ignore_errors=True)
        logger.debug("已记录缓存: %s@%s -> %s", name, identity, path)
        return entry

    def invalidate(self, name: str) -> bool:
        """删除单个包的记录和目录，返回是否删除了内容"""
        pkg_dir = self.root / validate_name(name)
        with self._lock:
            self._index.pop(name, None)
        if not pkg_dir.exists():
            return False
        shutil.rmtree(pkg_dir)
        logger.info("已清除缓存: %s", name)
        return True

    def invalidate_all(self) -> int:
        """删除整个缓存目录，返回清除的包数"""
        count = sum(
            1 for child in self.root.iterdir()
            if child.is_dir() and (child / ENTRY_FILE).is_file()
        )
        with self._lock:
            self._index.clear()
            shutil.rmtree(self.root)
            self.root.mkdir(parents=True, exist_ok=True)
        logger.info("已清空缓存: %s (%d 个包)", self.root, count)
        return count

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    def _read_entry(self, name: str) -> CacheEntry | None:
        marker = self.root / name / ENTRY_FILE
        try:
            data = load_yaml(marker)
        except (yaml.YAMLError, ValueError) as e:
            logger.warning("缓存标记文件损坏，视为未缓存: %s (%s)", marker, e)
            return None
        identity = data.get("identity")
        slot = data.get("slot")
        if not identity or not slot:
            return None
        return CacheEntry(
            name=name,
            identity=str(identity),
            path=self.root / name / str(slot),
            fetched_at=str(data.get("fetched_at", "")),
        )

    def _purge_staging(self, max_age: float) -> None:
        now = time.time()
        for staging in self.root.glob(f"*/{STAGING_PREFIX}*"):
            try:
                age = now - staging.stat().st_mtime
            except FileNotFoundError:
                continue
            if age < max_age:
                logger.debug("暂存目录仍在使用，跳过: %s", staging)
                continue
            logger.info("清理中断遗留的暂存目录: %s", staging)
            shutil.rmtree(staging, ignore_errors=True)
