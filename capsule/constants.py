# AES-GCM wire format: nonce || ciphertext || tag
NONCE_SIZE = 12
TAG_SIZE = 16

# AES-128, AES-192, AES-256
VALID_KEY_SIZES = (16, 24, 32)

# Secret data field holding the encryption key
ENCRYPTION_KEY_SECRET_FIELD = "encryptionKey"

# Key retriever type tags
SECRET_KEY_RETRIEVER_TYPE = "secret"

# Secret key retriever config keys
CONFIG_SECRET_NAME_KEY = "secretName"
CONFIG_NAMESPACE_KEY = "namespace"

# Encryption metadata keys, as persisted with the backup record
METADATA_IS_ENCRYPTED_KEY = "isEncrypted"
METADATA_SECRET_NAME_KEY = "encryptionSecretName"

# Environment variables consulted by the CLI
DEFAULT_KEY_ENV = "CAPSULE_ENCRYPTION_KEY"
SECRET_DIR_ENV = "CAPSULE_SECRET_DIR"

# Read size used when draining a ciphertext source
READ_CHUNK_SIZE = 1 << 20
