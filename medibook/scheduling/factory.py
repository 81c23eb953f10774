import datetime as dt
from typing import Callable

from loguru import logger

from medibook.config import AppConfig, StorageBackend
from medibook.scheduling.adapters.http_directory import HttpDirectoryClient
from medibook.scheduling.adapters.memory import InMemoryDirectory, InMemoryStorage
from medibook.scheduling.adapters.sqlite import SQLiteStorage
from medibook.scheduling.datetime_helpers import Clock, resolve_timezone
from medibook.scheduling.engine import SchedulingEngine
from medibook.scheduling.ports import DirectoryProtocol, SchedulingStorage


def _build_memory(config: AppConfig, tz: dt.tzinfo) -> SchedulingStorage:
    return InMemoryStorage()


def _build_sqlite(config: AppConfig, tz: dt.tzinfo) -> SchedulingStorage:
    return SQLiteStorage(
        config.storage.sqlite_path,
        tz,
        busy_timeout=config.storage.sqlite_busy_timeout_seconds,
    )


_BUILDERS: dict[StorageBackend, Callable[[AppConfig, dt.tzinfo], SchedulingStorage]] = {
    StorageBackend.MEMORY: _build_memory,
    StorageBackend.SQLITE: _build_sqlite,
}


def build_directory(config: AppConfig) -> DirectoryProtocol:
    """Use the HTTP directory when a base URL is configured, else an empty in-memory one."""
    if config.directory.base_url:
        logger.info("Using HTTP directory at {}", config.directory.base_url)
        return HttpDirectoryClient(
            config.directory.base_url,
            token=config.directory.token,
            timeout=config.directory.timeout_seconds,
        )
    logger.info("No directory URL configured; using in-memory directory")
    return InMemoryDirectory()


def build_engine(
    config: AppConfig,
    *,
    directory: DirectoryProtocol | None = None,
    clock: Clock | None = None,
) -> SchedulingEngine:
    """Build the scheduling engine with the storage backend selected in config."""
    tz = resolve_timezone(config.clinic_timezone)
    backend = config.storage.backend
    logger.info("Building scheduling engine with storage backend: {}", backend.value)
    storage = _BUILDERS[backend](config, tz)
    return SchedulingEngine(
        storage,
        directory or build_directory(config),
        config.scheduling,
        tz,
        clock=clock,
    )
