"""
Capsule: encryption at rest for backup archives.

Features:

- Whole-archive AES-GCM via PyCryptodomex: ``nonce(12) || ciphertext || tag(16)``
  with a fresh random nonce per archive.
- Buffering encrypt-on-close writer and eager decrypt-on-read reader that wrap
  any byte sink/source, so archive serializers stay unaware of encryption.
- Pluggable key retrievers resolved from a type tag plus a flat config; the
  secret-backed retriever reads the ``encryptionKey`` field of a cluster secret.
- Encryption metadata persisted with a backup to route restores.
- tar.gz helpers and a ``capsule`` CLI (keygen, seal, unseal, list).

Payloads are held in memory in full while being encrypted or decrypted; this is
not a streaming cipher.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "encryptor",
    "keys",
    "secrets",
    "writer",
    "reader",
    "metadata",
    "archive",
]
