"""
Static key provider.

Serves the locally configured verification key (HMAC secret or PEM public
key) regardless of the token's ``kid``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization

from ..config import ASYMMETRIC_ALGORITHMS

if TYPE_CHECKING:
    from ..config import JWTConfig
    from ..protocols import VerificationKey


class StaticKeyProvider:
    """Returns one fixed verification key for every token.

    Parameters
    ----------
    key : str | bytes
        HMAC shared secret, or a PEM-encoded public key.
    """

    def __init__(self, key: VerificationKey) -> None:
        self._key = key

    @classmethod
    def from_jwt_config(cls, config: JWTConfig) -> StaticKeyProvider:
        """Pick the verification key matching the configured algorithm.

        For asymmetric algorithms without an explicit public key, the public
        half is derived from the PEM private key held in ``secret``.
        """
        if config.algorithm not in ASYMMETRIC_ALGORITHMS:
            return cls(config.secret)
        if config.public_key:
            return cls(config.public_key)

        private_key = serialization.load_pem_private_key(
            config.secret.encode("utf-8"), password=None
        )
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return cls(public_pem)

    def get_key_for_token(self, kid: str | None) -> VerificationKey:
        return self._key
