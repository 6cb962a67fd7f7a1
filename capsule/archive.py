"""Backup archives (gzip-compressed tar) routed through the encryption layer.

Writing:

    with open("backup.tar.gz.enc", "wb") as fh:
        with EncryptedTarWriter(fh, key) as tw:
            tw.add_json("resources/pods/default/web.json", pod)
            tw.add_file("logs", "/var/log/backup")

Reading:

    tar = open_backup_archive(fh, metadata, retriever=retriever)
    for member in tar.getmembers():
        ...

The tar and gzip layers know nothing about encryption; they write into an
:class:`~capsule.writer.EncryptionWriter` and read from the plaintext view
returned by :func:`~capsule.reader.new_decryption_reader`.
"""

from __future__ import annotations

import gzip
import io
import json
import logging
import tarfile
import time
from typing import Any, BinaryIO, Optional

from .encryptor import KeyLike
from .errors import CapsuleError, KeyRetrievalFailed, MissingEncryptionKey
from .keys import KeyRetriever
from .metadata import EncryptionMetadata
from .reader import new_decryption_reader
from .writer import EncryptionWriter, new_encryption_writer, new_encryption_writer_from_retriever


logger = logging.getLogger(__name__)


class EncryptedTarWriter:
    """Write a tar.gz archive whose bytes are encrypted as a whole on :meth:`done`.

    Exactly one of ``key`` or ``retriever`` supplies the key.
    """

    def __init__(
        self,
        out: BinaryIO,
        key: Optional[KeyLike] = None,
        *,
        retriever: Optional[KeyRetriever] = None,
        compresslevel: int = 9,
    ):
        if (key is None) == (retriever is None):
            raise ValueError("exactly one of key or retriever is required")
        self.out = out
        if key is not None:
            self.encryption_writer: EncryptionWriter = new_encryption_writer(out, key)
        else:
            self.encryption_writer = new_encryption_writer_from_retriever(out, retriever)
        self._gz = gzip.GzipFile(fileobj=self.encryption_writer, mode="wb", compresslevel=compresslevel)
        self._tar = tarfile.open(fileobj=self._gz, mode="w", format=tarfile.PAX_FORMAT)
        self._done = False
        self._aborted = False
        self.count = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.done()
        else:
            self.abort()

    def add(self, name: str, data: bytes, *, mode: int = 0o644, mtime: Optional[float] = None) -> "EncryptedTarWriter":
        info = tarfile.TarInfo(name)
        info.size = len(data)
        info.mode = mode
        info.mtime = int(time.time() if mtime is None else mtime)
        self._tar.addfile(info, io.BytesIO(data))
        self.count += 1
        return self

    def add_json(self, name: str, obj: Any) -> "EncryptedTarWriter":
        return self.add(name, json.dumps(obj, sort_keys=True).encode("utf-8"))

    def add_file(self, arcname: str, path: str) -> "EncryptedTarWriter":
        """Add a filesystem path; directories are added recursively."""
        self._tar.add(path, arcname=arcname)
        self.count += 1
        return self

    def done(self) -> BinaryIO:
        """Finish the tar and gzip streams and emit the ciphertext into ``out``."""
        if self._aborted:
            raise ValueError("archive was aborted; nothing was written")
        if not self._done:
            self._tar.close()
            self._gz.close()
            self._done = True
            logger.debug("finished archive with %d entr(ies)", self.count)
        self.encryption_writer.close()
        return self.out

    def abort(self) -> None:
        """Drop the archive without sealing it; ``out`` receives nothing."""
        self._aborted = True
        self._done = True
        logger.debug("aborted archive after %d entr(ies)", self.count)


def open_backup_archive(
    source: BinaryIO,
    metadata: Optional[EncryptionMetadata] = None,
    *,
    key: Optional[KeyLike] = None,
    retriever: Optional[KeyRetriever] = None,
) -> tarfile.TarFile:
    """Open a backup archive for reading.

    When ``metadata`` marks the backup as encrypted the source is decrypted
    first, using ``key`` or else the key fetched from ``retriever``.

    Raises:
        MissingEncryptionKey: the backup is encrypted and no key source was given.
    """
    if metadata is not None and metadata.is_encrypted:
        if key is None and retriever is not None:
            try:
                key = retriever.get_key()
            except CapsuleError as exc:
                raise KeyRetrievalFailed(f"failed to get encryption key: {exc}") from exc
        if key is None:
            raise MissingEncryptionKey(
                f"backup is encrypted with secret '{metadata.encryption_secret_name}' but no key was provided"
            )
        source = new_decryption_reader(source, key)
    return tarfile.open(fileobj=source, mode="r:*")


__all__ = [
    "EncryptedTarWriter",
    "open_backup_archive",
]
