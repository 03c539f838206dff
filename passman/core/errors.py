class PassmanError(Exception):
    """Base class for every error raised by passman."""


# --- 协议层 (wire) ---

class ProtocolError(PassmanError):
    pass


class NoMessage(ProtocolError):
    """The peer closed the stream before sending a single byte."""


class MalformedMessage(ProtocolError):
    """The bytes on the stream do not form a valid envelope."""


class UnsupportedRequest(PassmanError):
    def __init__(self, message_type: type):
        super().__init__(f"Unsupported request: {message_type.__name__}")
        self.message_type = message_type


# --- 存储层 (store) ---

class StoreUnavailable(PassmanError):
    """The vault schema has not been initialized. Fatal to the daemon."""


class VaultError(PassmanError):
    pass


class DuplicateEntry(VaultError):
    def __init__(self, service: str, username: str):
        super().__init__(f"Entry already exists: {service}/{username}")
        self.service = service
        self.username = username


class NotFound(VaultError):
    def __init__(self, service: str, username: str):
        super().__init__(f"Entry not found: {service}/{username}")
        self.service = service
        self.username = username


class VaultLocked(VaultError):
    def __init__(self):
        super().__init__("Vault is locked")


class InvalidMasterPassword(VaultError):
    def __init__(self):
        super().__init__("Invalid master password")


class MasterPasswordNotSet(VaultError):
    def __init__(self):
        super().__init__("No master password has been set")


# --- 客户端 ---

class DaemonUnavailable(PassmanError):
    pass
