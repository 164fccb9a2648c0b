"""
Durable cache of chain-ready call data.

Each artifact is the raw calldata for ``ProtocolAdapter.execute``:
a 4-byte selector followed by the ABI-encoded transaction. Files are
addressed by the logical transaction parameters, so a repeated request
for the same shield or unshield never pays the proving cost twice.
"""
import os
import logging
import tempfile
from pathlib import Path
from typing import Optional, Union

import portalocker

from .exceptions import BackendFailure
from .ids import artifact_filename

logger = logging.getLogger(__name__)

# execute(Transaction) on the protocol adapter. Update here if the adapter's
# signature changes.
EXECUTE_SELECTOR = bytes.fromhex("ed3cf91f")


def assemble_calldata(abi_encoded_transaction: bytes) -> bytes:
    """
    Prefix an ABI-encoded transaction with the execute selector.

    Args:
        abi_encoded_transaction: ABI encoding of the protocol adapter Transaction

    Returns:
        Calldata ready to send to the protocol adapter
    """
    return EXECUTE_SELECTOR + bytes(abi_encoded_transaction)


def split_calldata(calldata: bytes) -> bytes:
    """
    Strip and check the execute selector.

    Returns:
        The ABI-encoded transaction

    Raises:
        BackendFailure: If the calldata does not start with the execute selector
    """
    if len(calldata) <= len(EXECUTE_SELECTOR) or not calldata.startswith(EXECUTE_SELECTOR):
        raise BackendFailure(
            "Artifact is not protocol adapter calldata",
            diagnostic=f"first bytes: {calldata[:8].hex()} ({len(calldata)} bytes)",
        )
    return calldata[len(EXECUTE_SELECTOR):]


class ArtifactCache:
    """
    Read-through cache of proving artifacts on the local file system.

    Writes go to a temporary file in the cache directory and are renamed
    into place, so readers see either the complete file or nothing. A
    per-key lock file serializes writers of the same artifact; concurrent
    misses for one key are redundant work, never corruption.
    """

    def __init__(self, directory: Union[str, Path], lock_timeout: float = 10):
        """
        Initialize the cache.

        Args:
            directory: Cache directory, created if missing
            lock_timeout: Seconds to wait for a writer lock
        """
        self.directory = Path(directory)
        self.lock_timeout = lock_timeout
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, kind: str, token: str, amount: int) -> Path:
        return self.directory / artifact_filename(kind, token, amount)

    def _lock_path(self, path: Path) -> str:
        return str(path) + ".lock"

    def load(self, kind: str, token: str, amount: int) -> Optional[bytes]:
        """
        Read a cached artifact.

        Returns:
            Artifact bytes, or None on a cache miss
        """
        return self.load_path(self.path_for(kind, token, amount))

    def load_path(self, path: Path) -> Optional[bytes]:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            logger.debug(f"Artifact cache miss: {path.name}")
            return None
        if not data:
            logger.warning(f"Ignoring empty artifact {path.name}")
            return None
        logger.debug(f"Artifact cache hit: {path.name} ({len(data)} bytes)")
        return data

    def store(self, kind: str, token: str, amount: int, data: bytes) -> Path:
        """
        Publish an artifact atomically.

        Returns:
            Path of the published artifact
        """
        return self.store_path(self.path_for(kind, token, amount), data)

    def store_path(self, path: Path, data: bytes) -> Path:
        if not data:
            raise ValueError("Refusing to cache an empty artifact")

        with portalocker.Lock(self._lock_path(path), timeout=self.lock_timeout):
            fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

        logger.info(f"Cached artifact {path.name} ({len(data)} bytes)")
        return path
