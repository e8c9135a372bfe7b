import asyncio
import os
import uuid

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import ObjectNotFound, StorageUnavailable


class StorageClientLocal:
    """Stores objects as files below STORAGE_LOCAL_PATH, mirroring the key as a relative path."""

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._base_path = helper_config.get_path_val("STORAGE_LOCAL_PATH", default="./uploads")

    def get_engine_name(self) -> str:
        return "local"

    def _resolve(self, key: str) -> str:
        """Map a key to a path below the base directory.

        Raises:
            ValueError: If the key is empty or escapes the base directory.
        """
        if not key or key.startswith(("/", "\\")):
            raise ValueError(f"Invalid storage key: {key!r}")
        full_path = os.path.realpath(os.path.join(self._base_path, key))
        base = os.path.realpath(self._base_path)
        if os.path.commonpath([full_path, base]) != base or full_path == base:
            raise ValueError(f"Storage key escapes the storage directory: {key!r}")
        return full_path

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        await asyncio.to_thread(os.makedirs, self._base_path, exist_ok=True)
        self.logging.debug("Local object storage at %s", self._base_path)

    async def close(self) -> None:
        return None

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def put(self, key: str, data: bytes) -> None:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as exc:
            raise StorageUnavailable(f"Could not write object '{key}': {exc}") from exc

    async def get(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(self._read, path)
        except FileNotFoundError as exc:
            raise ObjectNotFound(f"No object stored under '{key}'.") from exc
        except OSError as exc:
            raise StorageUnavailable(f"Could not read object '{key}': {exc}") from exc

    async def delete(self, key: str) -> None:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(self._remove, path)
        except OSError as exc:
            raise StorageUnavailable(f"Could not delete object '{key}': {exc}") from exc

    ##########################################
    ############### FILE HELPERS #############
    ##########################################

    @staticmethod
    def _write(path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        # unique per write: concurrent puts of one key must not share a temp file
        tmp_path = f"{path}.{uuid.uuid4().hex}.part"
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)

    @staticmethod
    def _read(path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def _remove(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        # prune directories left empty, never the base directory itself
        base = os.path.realpath(self._base_path)
        directory = os.path.dirname(path)
        while directory != base and directory.startswith(base):
            try:
                os.rmdir(directory)
            except OSError:
                break
            directory = os.path.dirname(directory)
