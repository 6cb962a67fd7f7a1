from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping

from .constants import (
    CONFIG_SECRET_NAME_KEY,
    METADATA_IS_ENCRYPTED_KEY,
    METADATA_SECRET_NAME_KEY,
    SECRET_KEY_RETRIEVER_TYPE,
)
from .errors import ConfigurationError, EmptySecretName
from .keys import KeyRetriever, RetrieverConfig, secret_key_config


def _parse_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigurationError(f"invalid value for '{METADATA_IS_ENCRYPTED_KEY}': {value!r}")


@dataclass
class EncryptionMetadata:
    """Encryption facts stored with a backup record.

    Restore uses ``is_encrypted`` to decide whether the archive goes through
    the decryption reader and ``encryption_secret_name`` to rebuild the key
    retriever.
    """

    is_encrypted: bool = False
    encryption_secret_name: str = ""

    @classmethod
    def for_retriever(cls, retriever: KeyRetriever) -> "EncryptionMetadata":
        if retriever.retriever_type != SECRET_KEY_RETRIEVER_TYPE:
            raise ConfigurationError(
                f"encryption metadata cannot describe key retriever type '{retriever.retriever_type}'"
            )
        return cls(is_encrypted=True, encryption_secret_name=retriever.config()[CONFIG_SECRET_NAME_KEY])

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EncryptionMetadata":
        return cls(
            is_encrypted=_parse_bool(data.get(METADATA_IS_ENCRYPTED_KEY, False)),
            encryption_secret_name=str(data.get(METADATA_SECRET_NAME_KEY) or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            METADATA_IS_ENCRYPTED_KEY: self.is_encrypted,
            METADATA_SECRET_NAME_KEY: self.encryption_secret_name,
        }

    def key_retriever_config(self, namespace: str) -> RetrieverConfig:
        if not self.encryption_secret_name:
            raise EmptySecretName("secret name cannot be empty")
        return secret_key_config(self.encryption_secret_name, namespace)


__all__ = ["EncryptionMetadata"]
