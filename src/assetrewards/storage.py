"""
assetrewards/storage.py

Durable key-value storage for reward records.

Provides:
1. StorageBackend - abstract async key-value contract with an explicit
   open/close lifecycle and flush()
2. MemoryBackend - volatile backend (tests, dry runs)
3. FileBackend - one file per key on local disk, atomic replace on write
4. RecordStore - namespaced, JSON-serialized record access shared by the
   request and payout stores

Every backend failure surfaces as StorageError.
"""

import os
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from .config import DEFAULT_STORAGE_DIR
from .errors import StorageError

logger = logging.getLogger("assetrewards.storage")


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    def __init__(self):
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        """Prepare the backend for use. Calling open() twice is a no-op."""
        if not self._open:
            await self._do_open()
            self._open = True

    async def close(self) -> None:
        """Flush and release the backend."""
        if self._open:
            await self.flush()
            await self._do_close()
            self._open = False

    async def __aenter__(self) -> "StorageBackend":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _check_open(self) -> None:
        if not self._open:
            raise StorageError(f"{type(self).__name__} is not open")

    async def _do_open(self) -> None:
        pass

    async def _do_close(self) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> None:
        """Store a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value. Returns False if the key did not exist."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter, sorted."""
        pass

    @abstractmethod
    async def flush(self) -> None:
        """Make all previous writes durable."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        self._check_open()
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        self._check_open()
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> bool:
        self._check_open()
        return self._data.pop(key, None) is not None

    async def list_keys(self, prefix: str = "") -> List[str]:
        self._check_open()
        return sorted(k for k in self._data if k.startswith(prefix))

    async def flush(self) -> None:
        self._check_open()


class FileBackend(StorageBackend):
    """
    Local file storage backend.

    Each key is stored in its own file whose name is the hex encoding of
    the key, so keys can be listed back without a separate index. Writes go
    to a temporary file which is fsynced and atomically renamed over the
    target; flush() fsyncs the directory so renames survive a crash.
    """

    SUFFIX = ".dat"
    TMP_SUFFIX = ".tmp"

    def __init__(self, storage_dir: Optional[Path] = None):
        super().__init__()
        self.storage_dir = Path(storage_dir or DEFAULT_STORAGE_DIR)

    async def _do_open(self) -> None:
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            # Leftovers from writes interrupted before their rename
            for stale in self.storage_dir.glob(f"*{self.TMP_SUFFIX}"):
                logger.warning(f"Removing incomplete write {stale.name}")
                stale.unlink()
        except OSError as e:
            raise StorageError(f"Failed to open storage at {self.storage_dir}: {e}")
        logger.debug(f"Opened file storage at {self.storage_dir}")

    def _key_to_path(self, key: str) -> Path:
        return self.storage_dir / f"{key.encode('utf-8').hex()}{self.SUFFIX}"

    def _path_to_key(self, path: Path) -> Optional[str]:
        try:
            return bytes.fromhex(path.name[:-len(self.SUFFIX)]).decode("utf-8")
        except ValueError:
            return None

    async def get(self, key: str) -> Optional[bytes]:
        self._check_open()
        path = self._key_to_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to read {key}: {e}")
            raise StorageError(f"Failed to read {key}: {e}")

    async def put(self, key: str, value: bytes) -> None:
        self._check_open()
        path = self._key_to_path(key)
        tmp_path = path.with_name(path.name + self.TMP_SUFFIX)
        try:
            with open(tmp_path, "wb") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            raise StorageError(f"Failed to write {key}: {e}")

    async def delete(self, key: str) -> bool:
        self._check_open()
        path = self._key_to_path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete {key}: {e}")
            raise StorageError(f"Failed to delete {key}: {e}")

    async def list_keys(self, prefix: str = "") -> List[str]:
        self._check_open()
        keys = []
        try:
            for path in self.storage_dir.glob(f"*{self.SUFFIX}"):
                key = self._path_to_key(path)
                if key is not None and key.startswith(prefix):
                    keys.append(key)
        except OSError as e:
            raise StorageError(f"Failed to list {self.storage_dir}: {e}")
        return sorted(keys)

    async def flush(self) -> None:
        self._check_open()
        if not hasattr(os, "O_DIRECTORY"):
            return
        try:
            fd = os.open(self.storage_dir, os.O_RDONLY | os.O_DIRECTORY)
            try:
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as e:
            logger.error(f"Failed to flush {self.storage_dir}: {e}")
            raise StorageError(f"Failed to flush {self.storage_dir}: {e}")


# ============================================================================
# RECORD STORE
# ============================================================================

T = TypeVar("T")


class StoreStatus(Enum):
    """Outcome of a record store mutation."""
    OK = "ok"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


class RecordStore(Generic[T]):
    """
    Namespaced record storage on top of a StorageBackend.

    Records are kept as compact JSON of their to_dict() form, which keeps
    the record's field order. Subclasses expose the narrow per-record
    contracts; nothing else touches the backend keys.
    """

    def __init__(
        self,
        backend: StorageBackend,
        namespace: str,
        serializer: Callable[[T], dict],
        deserializer: Callable[[dict], T],
    ):
        """
        Initialize record store.

        Args:
            backend: Opened (or to be opened) storage backend
            namespace: Key namespace for isolation
            serializer: Converts a record to a dict
            deserializer: Builds a record from a dict
        """
        self.backend = backend
        self.namespace = namespace
        self._to_dict = serializer
        self._from_dict = deserializer

    def _make_key(self, record_id: str) -> str:
        return f"{self.namespace}:{record_id}"

    def _encode(self, record: T) -> bytes:
        return json.dumps(self._to_dict(record), separators=(",", ":")).encode("utf-8")

    def _decode(self, key: str, data: bytes) -> T:
        try:
            return self._from_dict(json.loads(data.decode("utf-8")))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupt record at {key}: {e}")
            raise StorageError(f"Corrupt record at {key}: {e}")

    async def _read(self, record_id: str) -> Optional[T]:
        key = self._make_key(record_id)
        data = await self.backend.get(key)
        if data is None:
            return None
        return self._decode(key, data)

    async def _exists(self, record_id: str) -> bool:
        return await self.backend.get(self._make_key(record_id)) is not None

    async def _write(self, record_id: str, record: T) -> None:
        await self.backend.put(self._make_key(record_id), self._encode(record))
        await self.backend.flush()

    async def _erase(self, record_id: str) -> bool:
        deleted = await self.backend.delete(self._make_key(record_id))
        if deleted:
            await self.backend.flush()
        return deleted

    async def ids(self) -> List[str]:
        """List record ids in this namespace, sorted."""
        prefix = self._make_key("")
        return [k[len(prefix):] for k in await self.backend.list_keys(prefix)]

    async def all(self) -> List[T]:
        """Load every record in this namespace, ordered by id."""
        records = []
        for record_id in await self.ids():
            record = await self._read(record_id)
            if record is not None:
                records.append(record)
        return records
