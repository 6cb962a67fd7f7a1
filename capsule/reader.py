from __future__ import annotations

import io
import logging
from typing import BinaryIO

from .constants import READ_CHUNK_SIZE
from .encryptor import AesGcmEncryptor, KeyLike
from .errors import (
    CapsuleError,
    EncryptorConstructionFailed,
    KeyRetrievalFailed,
    SourceReadFailed,
)
from .keys import KeyRetriever


logger = logging.getLogger(__name__)


def _read_all(source: BinaryIO) -> bytes:
    buf = bytearray()
    try:
        while True:
            chunk = source.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            buf += chunk
    except (OSError, ValueError) as exc:
        raise SourceReadFailed(f"failed to copy input to buffer: {exc}") from exc
    return bytes(buf)


def new_decryption_reader(source: BinaryIO, key: KeyLike) -> io.BytesIO:
    """Read all of ``source``, decrypt it and return the plaintext as a reader.

    Raises:
        EncryptorConstructionFailed: ``key`` is not a usable AES key.
        SourceReadFailed: reading ``source`` failed.
        CiphertextTooShort, AuthenticationFailed: the data is not a valid
            ciphertext for ``key``.
    """
    try:
        encryptor = AesGcmEncryptor(key)
    except CapsuleError as exc:
        raise EncryptorConstructionFailed(f"failed to create AES encryptor: {exc}") from exc

    ciphertext = _read_all(source)
    plaintext = encryptor.decrypt(ciphertext)
    logger.debug("opened %d ciphertext byte(s) into %d plaintext byte(s)", len(ciphertext), len(plaintext))
    return io.BytesIO(plaintext)


def new_decryption_reader_from_retriever(source: BinaryIO, retriever: KeyRetriever) -> io.BytesIO:
    try:
        key = retriever.get_key()
    except CapsuleError as exc:
        raise KeyRetrievalFailed(f"failed to get encryption key: {exc}") from exc
    return new_decryption_reader(source, key)


__all__ = [
    "new_decryption_reader",
    "new_decryption_reader_from_retriever",
]
