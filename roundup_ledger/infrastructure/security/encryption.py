"""Symmetric encryption for aggregator credentials at rest"""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from roundup_ledger.config import settings


class TokenEncryption:
    """
    Encrypt and decrypt aggregator access tokens for storage.

    The Fernet key is derived from `settings.token_encryption_key` so any
    secret length works; rotating that secret makes stored tokens unreadable.
    """

    def __init__(self, secret: Optional[str] = None):
        secret = secret or settings.token_encryption_key
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
        self.cipher = Fernet(key)

    def encrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        return self.cipher.encrypt(token.encode()).decode()

    def decrypt(self, encrypted_token: Optional[str]) -> Optional[str]:
        """
        Raises:
            ValueError: ciphertext was produced with a different key or tampered with
        """
        if not encrypted_token:
            return None
        try:
            return self.cipher.decrypt(encrypted_token.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Stored credential cannot be decrypted") from e
