"""Authentication: principals, repositories, and the session authenticator."""

from gatehouse.auth.authenticator import SESSION_PRINCIPAL_KEY, SessionAuthenticator
from gatehouse.auth.principal import (
    CredentialRecord,
    MemoryPrincipalRepository,
    Principal,
    PrincipalRepository,
)

__all__ = [
    "SESSION_PRINCIPAL_KEY",
    "CredentialRecord",
    "MemoryPrincipalRepository",
    "Principal",
    "PrincipalRepository",
    "SessionAuthenticator",
]
