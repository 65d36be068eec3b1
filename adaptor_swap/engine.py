"""
Adaptor signature engine.

Pure functions over secp256k1 scalars and points. Given the two message ids
a swap binds together, the proposer builds an adaptor signature for the give
message that only becomes a full signature once the counterparty's real
signature scalar for the take message is added to it. Publishing the
completed give signature in turn reveals that scalar.

    T   = R_s + H(R_s || P_s || take) * P_s     commitment to the take signature
    R_a = R_p + T
    s_a = r_p + H(R_a || P_p || give) * k_p     adaptor scalar
    s_c = s_a + t                               completed give signature
    t   = s_c - s_a                             recovered take signature
"""

from typing import Callable

import structlog
from pydantic import BaseModel, Field

from . import curve
from .curve import N
from .errors import InvalidAdaptor, OutOfRange

logger = structlog.get_logger()

HEX32_PATTERN = r"^[0-9a-f]{64}$"
HEX64_PATTERN = r"^[0-9a-f]{128}$"


class ExchangeTerms(BaseModel):
    """
    What the engine needs to know about a swap.

    Both message ids are content hashes that can be computed before either
    message is signed.
    """

    proposer: str = Field(pattern=HEX32_PATTERN, description="Proposer x-only pubkey")
    counterparty: str = Field(
        pattern=HEX32_PATTERN, description="Counterparty x-only pubkey"
    )
    give_id: str = Field(pattern=HEX32_PATTERN, description="Id of the give message")
    take_id: str = Field(pattern=HEX32_PATTERN, description="Id of the take message")


class Adaptor(BaseModel):
    """One adaptor triple as carried in an adaptor record."""

    sa: str = Field(pattern=HEX32_PATTERN, description="Adaptor scalar")
    R: str = Field(pattern=HEX32_PATTERN, description="Proposer nonce x-coordinate")
    Ra: str = Field(pattern=HEX32_PATTERN, description="Adapted nonce x-coordinate")


def commitment_point(terms: ExchangeTerms, disclosed_nonce_x: str):
    """T = R_s + c_request * P_s, the public image of the take signature scalar."""
    R_s = curve.lift_x_hex(disclosed_nonce_x)
    P_s = curve.lift_x_hex(terms.counterparty)
    c_request = curve.challenge(disclosed_nonce_x, terms.counterparty, terms.take_id)
    return R_s + P_s * c_request


def compute_adaptor(
    terms: ExchangeTerms,
    disclosed_nonce_x: str,
    proposer_secret: int,
    nonce_source: Callable[[], int] = curve.random_scalar,
) -> Adaptor:
    """
    Build the proposer's adaptor signature over the give message.

    Args:
        terms: Pubkeys and message ids of the swap
        disclosed_nonce_x: Counterparty's nonce from the nonce disclosure
        proposer_secret: Proposer's raw secret scalar
        nonce_source: Returns fresh scalars in [1, n-1]; override in tests

    Returns:
        Adaptor whose ``Ra`` always has an even y-coordinate

    Raises:
        OutOfRange: If the nonce is not on the curve or the key is invalid
    """
    if not 1 <= proposer_secret < N:
        raise OutOfRange("proposer secret must be in the range 1..n-1")

    T = commitment_point(terms, disclosed_nonce_x)

    attempts = 0
    while True:
        attempts += 1
        r_p = nonce_source() % N
        if r_p == 0:
            continue
        R_p = curve.point_from_scalar(r_p)
        if not curve.has_even_y(R_p):
            r_p = N - r_p
            R_p = curve.negate(R_p)

        R_a = R_p + T
        if not curve.is_infinity(R_a) and curve.has_even_y(R_a):
            break

    Ra = curve.xonly_hex(R_a)
    c_offer = curve.challenge(Ra, terms.proposer, terms.give_id)

    # x-only pubkeys stand for the even-y point; flip the challenge if ours is odd
    if not curve.has_even_y(curve.point_from_scalar(proposer_secret)):
        c_offer = (N - c_offer) % N

    sa = (r_p + c_offer * proposer_secret) % N
    logger.debug("Computed adaptor", give_id=terms.give_id, attempts=attempts)

    return Adaptor(sa=curve.hex_from_int(sa), R=curve.xonly_hex(R_p), Ra=Ra)


def verify_adaptor(
    terms: ExchangeTerms, adaptor: Adaptor, disclosed_nonce_x: str | None = None
) -> bool:
    """
    Check ``sa * G == R_p + c * P_p`` for either sign of the challenge.

    When the disclosed nonce is supplied, also check that ``Ra`` is really
    ``R_p + T`` for the commitment derived from it.

    Never raises for a parsed adaptor: scalars out of range or nonces off the
    curve simply fail verification.
    """
    try:
        sa = curve.scalar_from_hex(adaptor.sa)
        R_p = curve.lift_x_hex(adaptor.R)
        P_p = curve.lift_x_hex(terms.proposer)
        R_a = curve.lift_x_hex(adaptor.Ra)
        if disclosed_nonce_x is not None:
            T = commitment_point(terms, disclosed_nonce_x)
            if not curve.points_equal(R_a, R_p + T):
                return False
    except OutOfRange:
        return False

    c_offer = curve.challenge(adaptor.Ra, terms.proposer, terms.give_id)
    left = curve.point_from_scalar(sa)

    if c_offer == 0:
        return curve.points_equal(left, R_p)
    if curve.points_equal(left, R_p + P_p * c_offer):
        return True
    return curve.points_equal(left, R_p + P_p * (N - c_offer))


def complete_signature(
    terms: ExchangeTerms,
    adaptor: Adaptor,
    secret_scalar: int,
    disclosed_nonce_x: str | None = None,
) -> str:
    """
    Turn a verified adaptor into a full BIP340 signature over the give message.

    The result is valid under the proposer's key; only the adaptor and the
    counterparty's own scalar go into it.

    Raises:
        InvalidAdaptor: If the adaptor does not verify against the terms
    """
    if not verify_adaptor(terms, adaptor, disclosed_nonce_x):
        logger.warning("Refusing to complete invalid adaptor", give_id=terms.give_id)
        raise InvalidAdaptor("adaptor does not verify against the give message")
    if not 0 <= secret_scalar < N:
        raise OutOfRange("secret scalar is not below the curve order")

    s_c = (int(adaptor.sa, 16) + secret_scalar) % N
    return adaptor.Ra + curve.hex_from_int(s_c)


def extract_secret(disclosed_nonce_x: str, adaptor: Adaptor, settlement_sig: str) -> int:
    """
    Recover the counterparty's take signature scalar from the published give signature.

    Returns:
        ``t = s_c - sa mod n``

    Raises:
        OutOfRange: If the nonce, published signature or adaptor scalar is malformed
    """
    curve.int_from_hex(disclosed_nonce_x)
    if len(settlement_sig) != 128:
        raise OutOfRange("signature must be 128 hex characters")
    s_c = curve.scalar_from_hex(settlement_sig[64:])
    sa = curve.scalar_from_hex(adaptor.sa)
    return (s_c - sa) % N


def recover_signature(disclosed_nonce_x: str, adaptor: Adaptor, settlement_sig: str) -> str:
    """Take message signature ``nonce || t`` rebuilt from the give settlement."""
    t = extract_secret(disclosed_nonce_x, adaptor, settlement_sig)
    return disclosed_nonce_x + curve.hex_from_int(t)
