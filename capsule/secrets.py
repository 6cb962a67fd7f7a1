"""Secret-access collaborators consumed by the secret key retriever.

A secret store only needs to answer ``fetch(name, namespace)`` with a
:class:`Secret` whose ``data`` maps field names to raw bytes, or raise
:class:`~capsule.errors.SecretStoreError`. Two stores ship here:

- :class:`InMemorySecretStore` for tests and embedding applications.
- :class:`DirectorySecretStore` reading the mounted-secret layout
  ``<root>/<namespace>/<name>/<field>`` (one file per data field).
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import SecretStoreError, SecretStoreNotFound


logger = logging.getLogger(__name__)


@dataclass
class Secret:
    name: str
    namespace: str
    data: Dict[str, bytes] = field(default_factory=dict)


class SecretStore(ABC):
    @abstractmethod
    def fetch(self, name: str, namespace: str) -> Secret:
        """Return the secret ``name`` in ``namespace``.

        Raises:
            SecretStoreNotFound: no such secret.
            SecretStoreError: any other lookup failure.
        """


class InMemorySecretStore(SecretStore):
    def __init__(self, secrets: Optional[Dict[Tuple[str, str], Dict[str, bytes]]] = None):
        self._secrets: Dict[Tuple[str, str], Dict[str, bytes]] = {}
        for (namespace, name), data in (secrets or {}).items():
            self.put(name, namespace, data)

    def put(self, name: str, namespace: str, data: Dict[str, bytes]) -> None:
        self._secrets[(namespace, name)] = {k: bytes(v) for k, v in data.items()}

    def delete(self, name: str, namespace: str) -> None:
        self._secrets.pop((namespace, name), None)

    def fetch(self, name: str, namespace: str) -> Secret:
        try:
            data = self._secrets[(namespace, name)]
        except KeyError:
            raise SecretStoreNotFound(f'secrets "{name}" not found in namespace "{namespace}"') from None
        return Secret(name=name, namespace=namespace, data=dict(data))


class DirectorySecretStore(SecretStore):
    """Secrets laid out on disk as ``<root>/<namespace>/<name>/<field>``.

    Hidden entries (dot-files, including the ``..data`` symlinks of projected
    volumes) are not treated as fields.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _secret_dir(self, name: str, namespace: str) -> Path:
        for part in (name, namespace):
            if not part or part in (".", "..") or os.sep in part or (os.altsep and os.altsep in part):
                raise SecretStoreError(f"invalid secret reference {namespace}/{name}")
        return self.root / namespace / name

    def fetch(self, name: str, namespace: str) -> Secret:
        secret_dir = self._secret_dir(name, namespace)
        if not secret_dir.is_dir():
            raise SecretStoreNotFound(f'secrets "{name}" not found in namespace "{namespace}"')
        data: Dict[str, bytes] = {}
        try:
            for entry in sorted(secret_dir.iterdir()):
                if entry.name.startswith(".") or not entry.is_file():
                    continue
                data[entry.name] = entry.read_bytes()
        except OSError as exc:
            raise SecretStoreError(f"failed to read secret {namespace}/{name}: {exc}") from exc
        logger.debug("read secret %s/%s with %d field(s)", namespace, name, len(data))
        return Secret(name=name, namespace=namespace, data=data)


__all__ = [
    "Secret",
    "SecretStore",
    "InMemorySecretStore",
    "DirectorySecretStore",
]
