"""
Secret vaults for the counterparty's stashed signature scalar.

The counterparty signs the take message when accepting, publishes the nonce
half and keeps the scalar half to itself by encrypting it to its own identity.
It is revealed again only when completing the give signature.
"""

import base64
import os
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from . import curve
from .errors import MalformedRecord
from .signers import KeyHolder


class SecretVault(ABC):
    """Encrypt-to-self capability, independent of any particular scheme."""

    @abstractmethod
    def store(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` so only this identity can read it back."""
        pass

    @abstractmethod
    def reveal(self, ciphertext: str) -> str:
        """
        Decrypt something previously returned by ``store``.

        Raises:
            MalformedRecord: If the ciphertext is corrupt or not ours
        """
        pass


class SelfEncryptionVault(SecretVault):
    """
    NIP-04 style encryption to one's own pubkey.

    The AES-256-CBC key is the x-coordinate of ``k * P`` where ``P`` is our own
    even-y public point, so the ciphertext is readable by any client holding
    the same key. Output format: ``base64(ciphertext)?iv=base64(iv)``.
    """

    def __init__(self, key_holder: KeyHolder):
        shared = curve.lift_x_hex(key_holder.pubkey) * key_holder.secret
        self._key = shared.x().to_bytes(32, byteorder="big")

    def store(self, plaintext: str) -> str:
        iv = os.urandom(16)
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext.encode()) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return (
            base64.b64encode(ciphertext).decode()
            + "?iv="
            + base64.b64encode(iv).decode()
        )

    def reveal(self, ciphertext: str) -> str:
        try:
            body, iv_part = ciphertext.split("?iv=")
            iv = base64.b64decode(iv_part, validate=True)
            data = base64.b64decode(body, validate=True)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(data) + decryptor.finalize()
            unpadder = padding.PKCS7(128).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode()
        except ValueError as e:
            raise MalformedRecord(f"cannot decrypt stored secret: {e}") from e


class FernetVault(SecretVault):
    """Symmetric vault keyed by a locally held Fernet master key."""

    def __init__(self, master_key: str):
        self._fernet = Fernet(master_key.encode())

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def store(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def reveal(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise MalformedRecord("cannot decrypt stored secret") from e
