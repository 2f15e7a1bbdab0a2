"""
Symmetric encryption of stored IAAA passwords.

Secrets are encrypted with AES-256-GCM under an operator supplied key.
The key is right-padded with "0" bytes and truncated to 32 bytes rather
than run through a KDF, so any key length is accepted.

Stored format is ``<nonce hex>:<ciphertext hex>``. Values written by
older deployments (AES-256-CBC with a 16 byte IV and PKCS7 padding) are
still accepted by ``decrypt``.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from blackboard_watcher.errors import DecryptionError


class CredentialVault:
    """
    Encrypts and decrypts secrets under a single key.

    Every call to ``encrypt`` draws a fresh nonce, so the same plaintext
    never produces the same ciphertext twice.
    """

    KEY_LENGTH = 32
    KEY_FILLER = b"0"
    NONCE_LENGTH = 12
    LEGACY_IV_LENGTH = 16

    def __init__(self, key: str):
        """
        Initialize the vault.

        Args:
            key: Operator supplied key of any length
        """
        self._key = self.normalize_key(key)

    @classmethod
    def normalize_key(cls, key: str) -> bytes:
        """Pad or truncate the key to exactly KEY_LENGTH bytes."""
        return key.encode("utf-8")[:cls.KEY_LENGTH].ljust(cls.KEY_LENGTH, cls.KEY_FILLER)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret.

        Args:
            plaintext: Secret to protect

        Returns:
            str: ``nonce:ciphertext`` as hex
        """
        nonce = os.urandom(self.NONCE_LENGTH)
        ciphertext = AESGCM(self._key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a value produced by ``encrypt``.

        Args:
            ciphertext: Stored ``nonce:ciphertext`` value

        Returns:
            str: The original secret

        Raises:
            DecryptionError: If the value is malformed or the key does not match
        """
        try:
            nonce_hex, body_hex = ciphertext.split(":")
            nonce = bytes.fromhex(nonce_hex)
            body = bytes.fromhex(body_hex)
        except (AttributeError, ValueError) as e:
            raise DecryptionError("Stored secret is malformed") from e

        try:
            if len(nonce) == self.NONCE_LENGTH:
                plaintext = AESGCM(self._key).decrypt(nonce, body, None)
            elif len(nonce) == self.LEGACY_IV_LENGTH:
                plaintext = self._decrypt_cbc(nonce, body)
            else:
                raise DecryptionError(f"Unexpected nonce length: {len(nonce)} bytes")
            return plaintext.decode("utf-8")
        except InvalidTag as e:
            raise DecryptionError("Stored secret does not match the encryption key") from e
        except (ValueError, UnicodeDecodeError) as e:
            raise DecryptionError(f"Failed to decrypt stored secret: {e}") from e

    def _decrypt_cbc(self, iv: bytes, body: bytes) -> bytes:
        """Decrypt the AES-256-CBC format written by older deployments."""
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt ``plaintext`` under ``key``."""
    return CredentialVault(key).encrypt(plaintext)


def decrypt(ciphertext: str, key: str) -> str:
    """Decrypt ``ciphertext`` with ``key``; raises DecryptionError on mismatch."""
    return CredentialVault(key).decrypt(ciphertext)
