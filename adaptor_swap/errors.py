"""Exception taxonomy for the swap core.

Every error raised here is deterministic for a given set of inputs, so
nothing in this package retries. Retries belong to whatever moves records
between relays.
"""


class SwapError(Exception):
    """Base class for all swap protocol errors."""

    pass


class MalformedRecord(SwapError):
    """A record failed schema, hex or linkage validation.

    Callers treat the record as not-yet-arrived.
    """

    pass


class OutOfRange(MalformedRecord):
    """A scalar or point could not be decoded (>= n, >= p, or off-curve)."""

    pass


class InvalidAdaptor(SwapError):
    """The adaptor equation does not hold.

    Either the proposer made a mistake or cannot be trusted; completion of the
    give message must not go ahead.
    """

    pass


class KeyUnavailable(SwapError):
    """An operation needs the raw private key but only an opaque signer is held."""

    pass


class RoleMismatch(SwapError):
    """A transition was attempted by the wrong party or in the wrong phase."""

    pass


class UnsupportedTemplate(SwapError):
    """The proposal uses a signature template type the engine cannot adapt."""

    pass
