"""
Signing capabilities.

Two tiers:

1. MessageSigner - can sign a message id and report its pubkey. Browser
   extensions and remote signers only ever offer this much.
2. KeyHolder - a MessageSigner that also exposes the raw secret scalar.
   Building adaptors needs it; nothing else does.

Protocol functions that need the raw key are annotated with KeyHolder and
check it at runtime as well, so an opaque signer fails with KeyUnavailable
rather than with a confusing curve error.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

import structlog

from . import curve
from .errors import KeyUnavailable
from .events import bind_signature
from .models import Event, EventTemplate, compute_event_id

logger = structlog.get_logger()


class SignerType(str, Enum):
    """Kind of signing backend."""

    LOCAL = "local"  # Secret key in memory
    DELEGATED = "delegated"  # Extension or remote signer, key never exposed


class MessageSigner(ABC):
    """Anything that can produce BIP340 signatures for one identity."""

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @property
    @abstractmethod
    def pubkey(self) -> str:
        """x-only public key as hex."""
        pass

    @abstractmethod
    def sign(self, message_id: str) -> str:
        """Sign a 32-byte message id, returning ``R.x || s`` as hex."""
        pass

    def sign_event(self, template: EventTemplate) -> Event:
        """Bind a template to this identity and sign it."""
        sig = self.sign(compute_event_id(self.pubkey, template))
        return bind_signature(template, self.pubkey, sig)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value}, pubkey={self.pubkey[:8]})"


class KeyHolder(MessageSigner):
    """A signer that holds its secret scalar directly."""

    @property
    @abstractmethod
    def secret(self) -> int:
        """Raw secret scalar in [1, n-1]."""
        pass


class LocalKeySigner(KeyHolder):
    """
    In-memory key.

    Accepts the secret as an int or as 64 hex characters.
    """

    def __init__(self, secret: int | str):
        super().__init__(SignerType.LOCAL)
        if isinstance(secret, str):
            secret = curve.int_from_hex(secret.lower())
        self._secret = secret
        self._pubkey = curve.xonly_pubkey(secret)

    @property
    def pubkey(self) -> str:
        return self._pubkey

    @property
    def secret(self) -> int:
        return self._secret

    def sign(self, message_id: str) -> str:
        return curve.schnorr_sign(message_id, self._secret)


class DelegatedSigner(MessageSigner):
    """
    A signer whose key lives elsewhere.

    ``sign_fn`` receives a message id and returns a signature; it is whatever
    bridge the surrounding application has to its extension or remote signer.
    """

    def __init__(self, pubkey: str, sign_fn: Callable[[str], str]):
        super().__init__(SignerType.DELEGATED)
        self._pubkey = pubkey
        self._sign_fn = sign_fn

    @property
    def pubkey(self) -> str:
        return self._pubkey

    def sign(self, message_id: str) -> str:
        return self._sign_fn(message_id)


def require_key_holder(signer: MessageSigner, operation: str) -> KeyHolder:
    """Fail fast when an operation needs a raw key the signer cannot give."""
    if not isinstance(signer, KeyHolder):
        logger.warning(
            "Raw key required", operation=operation, signer=signer.signer_type.value
        )
        raise KeyUnavailable(
            f"{operation} needs the raw private key; "
            f"a {signer.signer_type.value} signer cannot provide it"
        )
    return signer
