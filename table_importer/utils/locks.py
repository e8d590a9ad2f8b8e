import threading
from typing import Dict
from contextlib import contextmanager
import logging

from table_importer.domain.imports.errors import TableBusyError

logger = logging.getLogger(__name__)


class TableLockManager:
    """
    Per-table locks guaranteeing that at most one import or undo touches a
    table at a time. Runs never wait for each other: a second run against a
    busy table is refused with ``TableBusyError``.
    """
    _locks: Dict[str, threading.Lock] = {}
    _global_lock = threading.Lock()

    @classmethod
    def get_lock(cls, table_name: str) -> threading.Lock:
        """Get or create a lock for a specific table."""
        with cls._global_lock:
            if table_name not in cls._locks:
                cls._locks[table_name] = threading.Lock()
            return cls._locks[table_name]

    @classmethod
    def try_acquire(cls, table_name: str) -> None:
        """Take the table's lock or raise ``TableBusyError`` if it is held."""
        if not cls.get_lock(table_name).acquire(blocking=False):
            logger.info(f"Table '{table_name}' is busy")
            raise TableBusyError(table_name)
        logger.info(f"Acquired lock for table '{table_name}'")

    @classmethod
    def release(cls, table_name: str) -> None:
        cls.get_lock(table_name).release()
        logger.info(f"Released lock for table '{table_name}'")

    @classmethod
    def is_locked(cls, table_name: str) -> bool:
        return cls.get_lock(table_name).locked()

    @classmethod
    @contextmanager
    def acquire(cls, table_name: str):
        """Context manager to acquire (without waiting) and release a table lock."""
        cls.try_acquire(table_name)
        try:
            yield
        finally:
            cls.release(table_name)
