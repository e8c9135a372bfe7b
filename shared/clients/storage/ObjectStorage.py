"""Object storage capability.

Backends do not share a base class: anything with these coroutines can be
plugged in. The backend is picked at startup by StorageClientManager.
"""

import re
from typing import Protocol, runtime_checkable

from shared.models.errors import ValidationError

# path separators and control characters
_UNSAFE_OWNER_CHARS = re.compile(r"[/\\\x00-\x1f\x7f]")


@runtime_checkable
class ObjectStorage(Protocol):
    async def boot(self) -> None:
        """Acquire connections or create directories."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...

    async def put(self, key: str, data: bytes) -> None:
        """Store bytes under key, replacing any previous object.

        Raises:
            StorageUnavailable: If the backend cannot be written.
        """
        ...

    async def get(self, key: str) -> bytes:
        """Return the bytes stored under key.

        Raises:
            ObjectNotFound: If nothing is stored under key.
            StorageUnavailable: If the backend cannot be read.
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove the object. A missing object is not an error.

        Raises:
            StorageUnavailable: If the backend cannot be reached.
        """
        ...


def make_storage_key(owner_id: str, content_hash: str, filename: str) -> str:
    """Build the object key "{owner}/{contentHash}/{filename}"."""
    return f"{owner_id}/{content_hash}/{filename}"


def validate_owner_id(owner_id: str) -> str:
    """Return the stripped owner id if it is safe to use as the first key segment.

    Raises:
        ValidationError: If the owner id is blank or contains a path separator,
            ".." or a control character.
    """
    owner = str(owner_id or "").strip()
    if not owner:
        raise ValidationError("Owner id is required.")
    if owner == "." or ".." in owner or _UNSAFE_OWNER_CHARS.search(owner):
        raise ValidationError(f"Owner id {owner!r} contains characters that are not allowed.")
    return owner
