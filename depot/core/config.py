"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
缓存等有状态组件不读取全局配置，由调用方显式构造并传入。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields

import yaml

from depot.core.exceptions import ConfigError
from depot.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "depot-config.yml"


@dataclass
class Config:
    """全局配置"""

    # 文件与目录
    cache_dir: str = ".depot"
    package_set: str = "package-set.yml"
    manifest: str = "depot.yml"
    sources_dir: str = "src"  # 包内交给编译器的源码子目录

    # 获取
    max_workers: int = 8
    git_timeout: int = 600
    download_timeout: int = 120
    prefer_tarball: bool = True  # GitHub 仓库优先下载 archive tarball

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 必须 >= 1: {self.max_workers}")

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"配置文件无效 {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效 {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局默认配置，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.debug("配置已加载: %s", path)
    return _current
