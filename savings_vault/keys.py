"""
Owner key management utilities

Identities are x-only secp256k1 public keys (32 bytes). Keys are always
normalised so the public point has an even y coordinate, which lets a
verifier rebuild the full point from the 32-byte identity alone.
"""

import hashlib
from typing import Tuple

import base58
from ecdsa import SigningKey, VerifyingKey, SECP256k1, BadSignatureError, MalformedPointError

IDENTITY_LENGTH = 32


class OwnerKey:
    """Signing key for a vault owner"""

    def __init__(self, private_key: bytes = None):
        if private_key:
            signing_key = SigningKey.from_string(private_key, curve=SECP256k1)
        else:
            signing_key = SigningKey.generate(curve=SECP256k1)

        # Negate the secret when y is odd so the identity round-trips
        point = signing_key.get_verifying_key().pubkey.point
        if point.y() % 2 == 1:
            secret = SECP256k1.order - signing_key.privkey.secret_multiplier
            signing_key = SigningKey.from_secret_exponent(secret, curve=SECP256k1)

        self.private_key = signing_key
        self.public_key = signing_key.get_verifying_key()

    @property
    def identity(self) -> bytes:
        """32-byte x-only public key"""
        return self.public_key.pubkey.point.x().to_bytes(IDENTITY_LENGTH, 'big')

    @property
    def address(self) -> str:
        """Identity in base58 form"""
        return encode_address(self.identity)

    def private_key_hex(self) -> str:
        return self.private_key.to_string().hex()

    def sign_message(self, message: bytes) -> str:
        """Sign message and return signature in hex"""
        signature = self.private_key.sign_deterministic(message, hashfunc=hashlib.sha256)
        return signature.hex()

    @staticmethod
    def generate_key_pair() -> Tuple[str, str]:
        """Generate new key pair and return (private_key_hex, address)"""
        key = OwnerKey()
        return key.private_key_hex(), key.address


def encode_address(raw: bytes) -> str:
    return base58.b58encode(raw).decode('ascii')


def decode_address(address: str) -> bytes:
    """Decode a base58 identity or address into its 32 raw bytes"""
    if not isinstance(address, str):
        raise ValueError(f"Address must be a string, got {type(address).__name__}")
    try:
        raw = base58.b58decode(address)
    except ValueError as e:
        raise ValueError(f"Invalid base58 address: {address!r}") from e

    if len(raw) != IDENTITY_LENGTH:
        raise ValueError(f"Invalid address length: {len(raw)}")
    return raw


def load_verifying_key(identity: bytes) -> VerifyingKey:
    """Rebuild the even-y public key for an x-only identity"""
    if len(identity) != IDENTITY_LENGTH:
        raise ValueError(f"Identity must be {IDENTITY_LENGTH} bytes, got {len(identity)}")
    if int.from_bytes(identity, 'big') >= SECP256k1.curve.p():
        raise MalformedPointError("Point X not in field")
    return VerifyingKey.from_string(b'\x02' + identity, curve=SECP256k1)


def is_on_curve(value: bytes) -> bool:
    """True when value is the identity of some secp256k1 key pair"""
    try:
        load_verifying_key(value)
    except (MalformedPointError, ValueError):
        return False
    return True


def is_derived_address(address: str) -> bool:
    """True for 32-byte base58 addresses that no key pair controls

    Vault addresses are always of this form, so nothing but the registry may
    open an account at one.
    """
    try:
        raw = decode_address(address)
    except ValueError:
        return False
    return not is_on_curve(raw)


def verify_signature(identity: bytes, message: bytes, signature_hex: str) -> bool:
    """Verify signature against message and x-only identity"""
    if not signature_hex:
        return False

    try:
        vk = load_verifying_key(identity)
        signature = bytes.fromhex(signature_hex)
        return vk.verify(signature, message, hashfunc=hashlib.sha256)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False
