"""Publisher identity: an Ed25519 keypair addressed by its public half."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from nacl.signing import SigningKey

from keyfeed.domain.errors import ValidationError
from keyfeed.domain.model.primitives import SEED_BYTES, require_owner_key

if TYPE_CHECKING:
    from keyfeed.domain.model.primitives import OwnerKey


@dataclass(frozen=True, slots=True)
class Identity:
    """Keypair held for the lifetime of the process.

    ``signing_key`` is excluded from ``repr`` so that logging an identity never
    prints the private half.
    """

    signing_key: SigningKey = field(repr=False)
    public_key: OwnerKey = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "public_key", self.signing_key.verify_key.encode().hex())

    @classmethod
    def generate(cls) -> Identity:
        return cls(SigningKey.generate())

    @classmethod
    def from_seed_hex(cls, seed_hex: str, *, public_key: str | None = None) -> Identity:
        """Load an identity from its 32-byte private seed.

        When ``public_key`` is given it must match the key derived from the seed,
        which catches a key file whose halves were edited independently.
        """

        try:
            seed = bytes.fromhex(seed_hex)
        except ValueError as exc:
            raise ValidationError("Private key is not valid hex") from exc
        if len(seed) != SEED_BYTES:
            raise ValidationError(f"Private key must be {SEED_BYTES} bytes, got {len(seed)}")
        identity = cls(SigningKey(seed))
        if public_key is not None and require_owner_key(public_key) != identity.public_key:
            raise ValidationError("Public key does not match the private key")
        return identity

    @property
    def seed_hex(self) -> str:
        return bytes(self.signing_key).hex()
