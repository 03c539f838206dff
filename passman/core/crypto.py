import base64
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

DEFAULT_ITERATIONS = 600000

# 用主密码加密这段固定文本作为校验令牌，数据本身不加密
_VALIDATION_MARKER = b"passman-master-password-check"


class MasterKeyVerifier:
    """Checks master-password attempts against a stored salt + validation token."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        self.iterations = iterations

    def generate_salt(self) -> str:
        salt = os.urandom(16)
        return base64.urlsafe_b64encode(salt).decode("utf-8")

    def derive_key(self, master_password: str, salt_b64: str) -> bytes:
        salt = base64.urlsafe_b64decode(salt_b64)
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(master_password.encode("utf-8")))

    def create_token(self, master_password: str, salt_b64: str) -> str:
        fernet = Fernet(self.derive_key(master_password, salt_b64))
        return fernet.encrypt(_VALIDATION_MARKER).decode("utf-8")

    def verify(self, master_password: str, salt_b64: str, token: str) -> bool:
        fernet = Fernet(self.derive_key(master_password, salt_b64))
        try:
            return fernet.decrypt(token.encode("utf-8")) == _VALIDATION_MARKER
        except InvalidToken:
            return False
