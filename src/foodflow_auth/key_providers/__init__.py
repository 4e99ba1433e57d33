"""
Key provider implementations for resolving JWT verification keys.

This package contains implementations of the KeyProvider protocol:
locally configured keys for tokens we mint ourselves, and a remote JWKS
provider for tokens minted by a federated identity provider.
"""

from .jwks import JWKSKeyProvider
from .static import StaticKeyProvider

__all__ = ["JWKSKeyProvider", "StaticKeyProvider"]
