"""Key retrievers: where encryption keys come from.

The encryption code never learns how a key was obtained. A retriever is
resolved from a type tag plus a flat string config (the form persisted with a
backup) and asked for the key when it is needed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from .constants import (
    CONFIG_NAMESPACE_KEY,
    CONFIG_SECRET_NAME_KEY,
    ENCRYPTION_KEY_SECRET_FIELD,
    SECRET_KEY_RETRIEVER_TYPE,
)
from .errors import (
    CapsuleError,
    EmptyNamespace,
    EmptySecretName,
    KeyRetrieverConstructionError,
    SecretFieldMissing,
    SecretNotFound,
    SecretStoreError,
    UnknownRetrieverType,
)
from .secrets import SecretStore


logger = logging.getLogger(__name__)

RetrieverConfig = Dict[str, str]


class KeyRetriever(ABC):
    """Fetches an encryption key from some external source."""

    @abstractmethod
    def get_key(self) -> str:
        """Fetch the encryption key."""

    @property
    @abstractmethod
    def retriever_type(self) -> str:
        """Tag naming the source this retriever reads from."""

    @abstractmethod
    def config(self) -> RetrieverConfig:
        """Config another retriever of the same type can use to fetch the same key."""


def secret_key_config(secret_name: str, namespace: str) -> RetrieverConfig:
    return {
        CONFIG_SECRET_NAME_KEY: secret_name,
        CONFIG_NAMESPACE_KEY: namespace,
    }


def _read_key_field(secret_store: SecretStore, secret_name: str, namespace: str) -> str:
    try:
        secret = secret_store.fetch(secret_name, namespace)
    except SecretStoreError as exc:
        raise SecretNotFound(f"failed to get encryption key secret '{secret_name}': {exc}") from exc
    key = secret.data.get(ENCRYPTION_KEY_SECRET_FIELD)
    if key is None:
        raise SecretFieldMissing(
            f"encryption key secret '{secret_name}' lacks field '{ENCRYPTION_KEY_SECRET_FIELD}'"
        )
    # binary keys survive as surrogates; key_bytes() restores the raw bytes
    return key.decode("utf-8", "surrogateescape")


def get_encryption_key_from_secret(secret_store: SecretStore, secret_name: str, namespace: str) -> str:
    """Read the key field of ``namespace/secret_name`` once."""
    return _read_key_field(secret_store, secret_name, namespace)


class SecretKeyRetriever(KeyRetriever):
    """Reads the key from the ``encryptionKey`` field of a cluster secret.

    Every :meth:`get_key` call fetches the secret again.
    """

    def __init__(self, secret_store: Optional[SecretStore], secret_name: str, namespace: str):
        self.secret_store = secret_store
        self.secret_name = secret_name
        self.namespace = namespace

    @classmethod
    def from_config(cls, secret_store: Optional[SecretStore], config: RetrieverConfig) -> "SecretKeyRetriever":
        secret_name = (config or {}).get(CONFIG_SECRET_NAME_KEY, "")
        if not secret_name:
            raise EmptySecretName("secret name cannot be empty")
        namespace = (config or {}).get(CONFIG_NAMESPACE_KEY, "")
        if not namespace:
            raise EmptyNamespace("namespace cannot be empty")
        return cls(secret_store, secret_name, namespace)

    @property
    def retriever_type(self) -> str:
        return SECRET_KEY_RETRIEVER_TYPE

    def config(self) -> RetrieverConfig:
        return secret_key_config(self.secret_name, self.namespace)

    def get_key(self) -> str:
        logger.debug("fetching encryption key from secret %s/%s", self.namespace, self.secret_name)
        return _read_key_field(self.secret_store, self.secret_name, self.namespace)

    def __eq__(self, other):
        if not isinstance(other, SecretKeyRetriever):
            return NotImplemented
        return (
            self.secret_store is other.secret_store
            and self.secret_name == other.secret_name
            and self.namespace == other.namespace
        )

    def __repr__(self) -> str:
        return f"SecretKeyRetriever(secret_name={self.secret_name!r}, namespace={self.namespace!r})"


RetrieverBuilder = Callable[[Optional[SecretStore], RetrieverConfig], KeyRetriever]

_RETRIEVERS: Dict[str, RetrieverBuilder] = {
    SECRET_KEY_RETRIEVER_TYPE: SecretKeyRetriever.from_config,
}


def register_key_retriever(retriever_type: str, builder: RetrieverBuilder) -> None:
    """Make ``retriever_type`` resolvable by :func:`key_retriever_for`."""
    if not retriever_type:
        raise ValueError("retriever type cannot be empty")
    _RETRIEVERS[retriever_type] = builder


def key_retriever_for(
    retriever_type: str,
    config: RetrieverConfig,
    secret_store: Optional[SecretStore],
) -> KeyRetriever:
    """Create a key retriever of ``retriever_type`` from ``config``.

    Raises:
        KeyRetrieverConstructionError: the type is unknown or its config is
            invalid; the underlying error is chained as ``__cause__``.
    """
    try:
        builder = _RETRIEVERS.get(retriever_type)
        if builder is None:
            raise UnknownRetrieverType(f"encryption key retriever for type '{retriever_type}' does not exist")
        return builder(secret_store, dict(config or {}))
    except CapsuleError as exc:
        raise KeyRetrieverConstructionError(retriever_type, exc) from exc


__all__ = [
    "KeyRetriever",
    "SecretKeyRetriever",
    "RetrieverConfig",
    "secret_key_config",
    "get_encryption_key_from_secret",
    "register_key_retriever",
    "key_retriever_for",
]
