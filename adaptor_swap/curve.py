"""
secp256k1 helpers for BIP340 Schnorr signatures.

Point arithmetic comes from the ``ecdsa`` package; everything BIP340 adds on
top of plain ECDSA (x-only keys, the even-y rule, tagged hashes) lives here.
All public values cross this module boundary as Python ints or 32-byte
big-endian hex strings.
"""

import hashlib
import re
import secrets

from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, PointJacobi

from .errors import OutOfRange

CURVE = SECP256k1.curve
G = SECP256k1.generator
N = SECP256k1.order
P = CURVE.p()

CHALLENGE_TAG = "BIP0340/challenge"

HEX32 = re.compile(r"[0-9a-f]{64}")


def tagged_hash(tag: str, msg: bytes) -> bytes:
    """BIP340 domain-separated SHA256."""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + msg).digest()


def int_from_hex(value: str) -> int:
    if not HEX32.fullmatch(value):
        raise OutOfRange(f"expected 64 lower-case hex characters: {value!r}")
    return int(value, 16)


def hex_from_int(value: int) -> str:
    return value.to_bytes(32, byteorder="big").hex()


def scalar_from_hex(value: str) -> int:
    """Decode a scalar, rejecting anything outside [0, n)."""
    scalar = int_from_hex(value)
    if scalar >= N:
        raise OutOfRange("scalar is not below the curve order")
    return scalar


def is_infinity(point) -> bool:
    return point == INFINITY


def has_even_y(point) -> bool:
    return point.y() % 2 == 0


def negate(point):
    return PointJacobi(CURVE, point.x(), P - point.y(), 1)


def points_equal(a, b) -> bool:
    if is_infinity(a) or is_infinity(b):
        return is_infinity(a) and is_infinity(b)
    return a.x() == b.x() and a.y() == b.y()


def lift_x(x: int):
    """Return the curve point with x-coordinate ``x`` and even y.

    Raises:
        OutOfRange: if ``x`` is not below p or no such point exists
    """
    if not 0 <= x < P:
        raise OutOfRange("x-coordinate is not below the field size")
    y_sq = (pow(x, 3, P) + 7) % P
    y = pow(y_sq, (P + 1) // 4, P)
    if pow(y, 2, P) != y_sq:
        raise OutOfRange("x-coordinate is not on the curve")
    return PointJacobi(CURVE, x, y if y % 2 == 0 else P - y, 1)


def lift_x_hex(value: str):
    return lift_x(int_from_hex(value))


def point_from_scalar(scalar: int):
    return G * scalar


def xonly_hex(point) -> str:
    return hex_from_int(point.x())


def xonly_pubkey(secret: int) -> str:
    """x-only public key for a secret scalar."""
    if not 1 <= secret < N:
        raise OutOfRange("secret key must be in the range 1..n-1")
    return xonly_hex(point_from_scalar(secret))


def challenge(nonce_x: str, pubkey_x: str, message_id: str) -> int:
    """BIP340 challenge ``H(R.x || P.x || m) mod n``."""
    data = bytes.fromhex(nonce_x) + bytes.fromhex(pubkey_x) + bytes.fromhex(message_id)
    return int.from_bytes(tagged_hash(CHALLENGE_TAG, data), byteorder="big") % N


def random_scalar() -> int:
    return secrets.randbelow(N - 1) + 1


def schnorr_sign(message_id: str, secret: int, aux_rand: bytes | None = None) -> str:
    """Sign a 32-byte message id, returning the 128-hex ``R.x || s`` signature."""
    if not 1 <= secret < N:
        raise OutOfRange("secret key must be in the range 1..n-1")
    if aux_rand is None:
        aux_rand = secrets.token_bytes(32)

    pub = point_from_scalar(secret)
    d = secret if has_even_y(pub) else N - secret
    pubkey_x = xonly_hex(pub)
    msg = bytes.fromhex(message_id)

    masked = (d ^ int.from_bytes(tagged_hash("BIP0340/aux", aux_rand), "big")).to_bytes(32, "big")
    k0 = (
        int.from_bytes(
            tagged_hash("BIP0340/nonce", masked + bytes.fromhex(pubkey_x) + msg), "big"
        )
        % N
    )
    if k0 == 0:
        raise RuntimeError("nonce derivation produced zero")
    R = point_from_scalar(k0)
    k = k0 if has_even_y(R) else N - k0

    r_x = xonly_hex(R)
    e = challenge(r_x, pubkey_x, message_id)
    return r_x + hex_from_int((k + e * d) % N)


def schnorr_verify(message_id: str, pubkey_x: str, signature: str) -> bool:
    """Standard BIP340 verification. Returns False for any malformed input."""
    if len(signature) != 128:
        return False
    try:
        int_from_hex(message_id)
        pub = lift_x_hex(pubkey_x)
        r = int_from_hex(signature[:64])
        s = int_from_hex(signature[64:])
    except OutOfRange:
        return False
    if r >= P or s >= N:
        return False

    e = challenge(signature[:64], pubkey_x, message_id)
    R = point_from_scalar(s) + pub * (N - e) if e else point_from_scalar(s)
    if is_infinity(R) or not has_even_y(R):
        return False
    return R.x() == r
