from __future__ import annotations

import enum
import logging
from typing import BinaryIO

from .encryptor import AesGcmEncryptor, Encryptor, KeyLike
from .errors import (
    CapsuleError,
    EncryptionFailed,
    EncryptorConstructionFailed,
    KeyRetrievalFailed,
    SinkWriteFailed,
    WriterClosed,
)
from .keys import KeyRetriever


logger = logging.getLogger(__name__)


class WriterState(enum.Enum):
    OPEN = "open"
    # ciphertext computed, not yet written to the sink
    SEALED = "sealed"
    DELIVERED = "delivered"


class EncryptionWriter:
    """Buffers everything written and emits it encrypted on close.

    Nothing reaches ``out`` before :meth:`close`, which encrypts the whole
    buffer once and writes the ciphertext in a single call. Instances are not
    thread-safe.
    """

    def __init__(self, encryptor: Encryptor, out: BinaryIO):
        self.encryptor = encryptor
        self.out = out
        self._plaintext = bytearray()
        self._state = WriterState.OPEN

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def state(self) -> WriterState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is not WriterState.OPEN

    @property
    def buffered_size(self) -> int:
        return len(self._plaintext)

    def writable(self) -> bool:
        return not self.closed

    def readable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def write(self, data) -> int:
        if self.closed:
            raise WriterClosed("failed to write: encryption writer is closed")
        self._plaintext += data
        return len(data)

    def flush(self) -> None:
        # Data is only emitted on close
        pass

    def close(self) -> None:
        if self.closed:
            return
        try:
            ciphertext = self.encryptor.encrypt(bytes(self._plaintext))
        except CapsuleError as exc:
            raise EncryptionFailed(f"failed to encrypt: {exc}") from exc

        # The plaintext is consumed once encrypted; a retried close must not
        # seal it again.
        self._state = WriterState.SEALED
        plaintext_size = len(self._plaintext)
        self._plaintext = bytearray()
        logger.debug("sealed %d plaintext byte(s) into %d ciphertext byte(s)", plaintext_size, len(ciphertext))

        try:
            self._deliver(ciphertext)
        except (OSError, ValueError) as exc:
            raise SinkWriteFailed(f"failed to write cipher text to output writer: {exc}") from exc
        self._state = WriterState.DELIVERED

    def _deliver(self, ciphertext: bytes) -> None:
        # Raw sinks (pipes, sockets, unbuffered files) may take only part of a
        # write; sinks that return None took all of it.
        remaining = ciphertext
        while remaining:
            n = self.out.write(remaining)
            if n is None:
                return
            if n <= 0:
                raise SinkWriteFailed(
                    "failed to write cipher text to output writer: short write, "
                    f"{len(ciphertext) - len(remaining)} of {len(ciphertext)} byte(s) delivered"
                )
            remaining = remaining[n:]


def new_encryption_writer(out: BinaryIO, key: KeyLike) -> EncryptionWriter:
    """Return a writer that AES-GCM encrypts everything written into ``out``."""
    try:
        encryptor = AesGcmEncryptor(key)
    except CapsuleError as exc:
        raise EncryptorConstructionFailed(f"failed to create AES encryptor: {exc}") from exc
    return EncryptionWriter(encryptor, out)


def new_encryption_writer_from_retriever(out: BinaryIO, retriever: KeyRetriever) -> EncryptionWriter:
    """Like :func:`new_encryption_writer`, fetching the key from ``retriever``."""
    try:
        key = retriever.get_key()
    except CapsuleError as exc:
        raise KeyRetrievalFailed(f"failed to get encryption key: {exc}") from exc
    return new_encryption_writer(out, key)


__all__ = [
    "WriterState",
    "EncryptionWriter",
    "new_encryption_writer",
    "new_encryption_writer_from_retriever",
]
