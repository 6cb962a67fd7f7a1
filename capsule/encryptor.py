from __future__ import annotations

"""AES-GCM authenticated encryption of whole payloads, backed by PyCryptodomex.

Ciphertexts are laid out as ``nonce(12) || ciphertext || tag(16)`` with no
header or version. Each call to :meth:`AesGcmEncryptor.encrypt` draws a fresh
random nonce, so a key may safely be reused across payloads.
"""

import os
from abc import ABC, abstractmethod
from typing import Callable, Union

from Cryptodome.Cipher import AES

from .constants import NONCE_SIZE, TAG_SIZE, VALID_KEY_SIZES
from .errors import (
    AuthenticationFailed,
    CipherConstructionError,
    CiphertextTooShort,
    InvalidKeySize,
    RandomSourceExhausted,
)


KeyLike = Union[str, bytes]


def key_bytes(key: KeyLike) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8", "surrogateescape")
    return bytes(key)


class Encryptor(ABC):
    """Encrypts and decrypts a complete byte payload."""

    @abstractmethod
    def encrypt(self, plaintext: bytes) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: bytes) -> bytes:
        ...


class AesGcmEncryptor(Encryptor):
    """AES in Galois/Counter Mode using the raw key as given.

    Args:
        key: 16, 24 or 32 bytes of key material; strings are UTF-8 encoded.
        random_source: callable returning ``n`` cryptographically secure bytes.
    """

    def __init__(self, key: KeyLike, *, random_source: Callable[[int], bytes] = os.urandom):
        raw = key_bytes(key)
        if len(raw) not in VALID_KEY_SIZES:
            raise InvalidKeySize(len(raw))
        self._key = raw
        self._random_source = random_source
        try:
            self._new_cipher(bytes(NONCE_SIZE))
        except (ValueError, TypeError) as exc:
            raise CipherConstructionError(f"failed to create Galois Counter Mode for cipher: {exc}") from exc

    def _new_cipher(self, nonce: bytes):
        # GCM cipher objects are single-use, one is created per operation
        return AES.new(self._key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)

    def _nonce(self) -> bytes:
        try:
            nonce = self._random_source(NONCE_SIZE)
        except (OSError, NotImplementedError) as exc:
            raise RandomSourceExhausted(f"failed to create nonce for encryption: {exc}") from exc
        if len(nonce) != NONCE_SIZE:
            raise RandomSourceExhausted(
                f"failed to create nonce for encryption: got {len(nonce)} of {NONCE_SIZE} random bytes"
            )
        return nonce

    def encrypt(self, plaintext: bytes) -> bytes:
        """Seal ``plaintext`` without associated data.

        Returns ``nonce || ciphertext || tag``.
        """
        nonce = self._nonce()
        ciphertext, tag = self._new_cipher(nonce).encrypt_and_digest(bytes(plaintext))
        return nonce + ciphertext + tag

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Verify and open a payload produced by :meth:`encrypt`."""
        if len(ciphertext) <= NONCE_SIZE:
            raise CiphertextTooShort(len(ciphertext))
        nonce = bytes(ciphertext[:NONCE_SIZE])
        sealed = bytes(ciphertext[NONCE_SIZE:])
        if len(sealed) < TAG_SIZE:
            raise AuthenticationFailed("failed to decrypt ciphertext: message authentication failed")
        body, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        try:
            return self._new_cipher(nonce).decrypt_and_verify(body, tag)
        except ValueError as exc:
            raise AuthenticationFailed("failed to decrypt ciphertext: message authentication failed") from exc

    def overhead(self) -> int:
        return NONCE_SIZE + TAG_SIZE


__all__ = [
    "Encryptor",
    "AesGcmEncryptor",
    "KeyLike",
    "key_bytes",
]
