"""YAML config loader."""

import os
from dataclasses import dataclass, field
from typing import List

import yaml

GENERATOR_VERSION = "2.2.0"


@dataclass
class DownloadConfig:
    timeout: float = 20.0
    max_retries: int = 2
    retry_delay: float = 1.0
    user_agent: str = "StaticSnapshot/2.2 (+offline mirror)"
    max_file_size: int = 52428800
    max_nested_depth: int = 3


@dataclass
class BatchConfig:
    interactive_size: int = 5
    background_size: int = 10
    initial_delay: float = 10.0
    reschedule_delay: float = 30.0
    failure_policy: str = "drop"  # drop, requeue
    max_requeues: int = 3


@dataclass
class CacheConfig:
    ttl: int = 86400  # 0 = never expire by age


@dataclass
class CleanupConfig:
    strip_rels: List[str] = field(default_factory=lambda: [
        "https://api.w.org/", "alternate", "EditURI", "wlwmanifest", "shortlink",
    ])
    strip_meta_generator: bool = True
    strip_script_markers: List[str] = field(default_factory=lambda: ["wp-emoji-release.min.js"])
    strip_attributes: List[str] = field(default_factory=lambda: ["data-wp-strategy"])


@dataclass
class AppConfig:
    site_url: str = "http://localhost"
    static_dir: str = "static"
    db_path: str = "snapshot.db"
    log_dir: str = "logs"
    log_level: str = "INFO"
    archive_dir: str = "exports"
    download: DownloadConfig = field(default_factory=DownloadConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)


def _section(cls, raw):
    raw = raw or {}
    return cls(**{k: v for k, v in raw.items() if k in cls.__dataclass_fields__})


def load_config(config_path: str = "config.yaml") -> AppConfig:
    if not os.path.exists(config_path):
        return AppConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    batch = _section(BatchConfig, raw.get("batch"))
    if batch.failure_policy not in ("drop", "requeue"):
        raise ValueError(f"Unknown batch.failure_policy: {batch.failure_policy!r}")

    return AppConfig(
        site_url=raw.get("site_url", "http://localhost").rstrip("/"),
        static_dir=raw.get("static_dir", "static"),
        db_path=raw.get("db_path", "snapshot.db"),
        log_dir=raw.get("log_dir", "logs"),
        log_level=str(raw.get("log_level", "INFO")).upper(),
        archive_dir=raw.get("archive_dir", "exports"),
        download=_section(DownloadConfig, raw.get("download")),
        batch=batch,
        cache=_section(CacheConfig, raw.get("cache")),
        cleanup=_section(CleanupConfig, raw.get("cleanup")),
    )
