"""
Lib package for Amparo.

Contains shared utilities:
- encryption.py: Per-user envelope encryption (AES-256-GCM, PBKDF2)
- errors.py: Error codes and pt/en user-facing messages
- exceptions.py: Exception hierarchy
- security.py: Message validation, log-safe ids, security headers
- circuit_breaker.py: Circuit breaker for the language model provider
- logging.py: structlog configuration
"""

from amparo.lib.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from amparo.lib.encryption import (
    DECRYPTION_PLACEHOLDER,
    EncryptedPayload,
    EncryptionSession,
    decrypt,
    derive_key,
    encrypt,
    generate_salt,
)
from amparo.lib.exceptions import (
    AmparoException,
    AuthError,
    CompletionError,
    ConfigurationError,
    CryptoError,
    DatabaseError,
    OwnershipError,
    ValidationError,
)
from amparo.lib.security import MessageValidator, hash_uid

__all__ = [
    "DECRYPTION_PLACEHOLDER",
    "AmparoException",
    "AuthError",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "CompletionError",
    "ConfigurationError",
    "CryptoError",
    "DatabaseError",
    "EncryptedPayload",
    "EncryptionSession",
    "MessageValidator",
    "OwnershipError",
    "ValidationError",
    "decrypt",
    "derive_key",
    "encrypt",
    "generate_salt",
    "hash_uid",
]
