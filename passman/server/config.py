import os
import sys
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_home() -> Path:
    app_name = "passman"
    home = Path.home()
    if sys.platform == "win32":
        # Windows: C:\Users\Name\AppData\Roaming\passman
        return home / "AppData" / "Roaming" / app_name
    # Linux/Mac: /home/name/.local/share/passman
    return home / ".local" / "share" / app_name


class Settings(BaseSettings):
    # --- 存储 ---
    # PASSMAN_HOME 可以把整个数据目录挪到别处
    home: Path = Field(default_factory=default_home)
    db_filename: str = "passman.db"
    db_echo: bool = False

    # --- 通信 ---
    socket_path: Path = Path("/tmp/passmand.sock")

    # --- 锁 ---
    kdf_iterations: int = Field(default=600000, ge=1)
    lock_on_start: bool = True

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PASSMAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def db_path(self) -> Path:
        return self.home / self.db_filename

    def ensure_home(self) -> Path:
        """Create the data directory with owner-only permissions."""
        self.home.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(self.home, 0o700)
        return self.home


@lru_cache
def get_settings() -> Settings:
    return Settings()
