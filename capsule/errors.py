class CapsuleError(Exception):
    """Base class for capsule-specific errors."""


# Problem groups
class KeyMaterialError(CapsuleError):
    """The key is unusable or could not be obtained."""


class IntegrityError(CapsuleError):
    """The ciphertext is malformed or failed authentication."""


class TransportError(CapsuleError):
    """An underlying sink, source, secret store or random source failed."""


class ConfigurationError(CapsuleError):
    """A key retriever was configured incorrectly."""


# AEAD adapter
class InvalidKeySize(KeyMaterialError):
    def __init__(self, size: int):
        super().__init__(f"failed to create AES cipher: invalid key size {size}")
        self.size = size


class CipherConstructionError(KeyMaterialError):
    pass


class RandomSourceExhausted(TransportError):
    pass


class CiphertextTooShort(IntegrityError):
    def __init__(self, length: int):
        super().__init__(f"failed to decrypt: ciphertext (length {length}) too short")
        self.length = length


class AuthenticationFailed(IntegrityError):
    pass


# Writer / reader
class WriterClosed(CapsuleError):
    pass


class EncryptionFailed(CapsuleError):
    pass


class SinkWriteFailed(TransportError):
    pass


class SourceReadFailed(TransportError):
    pass


class EncryptorConstructionFailed(KeyMaterialError):
    pass


class KeyRetrievalFailed(KeyMaterialError):
    pass


class MissingEncryptionKey(KeyMaterialError):
    pass


# Key retrievers
class UnknownRetrieverType(ConfigurationError):
    pass


class EmptySecretName(ConfigurationError):
    pass


class EmptyNamespace(ConfigurationError):
    pass


class KeyRetrieverConstructionError(ConfigurationError):
    def __init__(self, retriever_type: str, cause: Exception):
        super().__init__(f"could not create encryption key retriever for type '{retriever_type}': {cause}")
        self.retriever_type = retriever_type


class SecretNotFound(TransportError):
    pass


class SecretFieldMissing(TransportError):
    pass


# Secret stores
class SecretStoreError(CapsuleError):
    pass


class SecretStoreNotFound(SecretStoreError):
    pass
