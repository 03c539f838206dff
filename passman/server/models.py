from datetime import datetime
from typing import ClassVar, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from passman.core.models import Entry


class VaultEntry(SQLModel, table=True):
    __tablename__: ClassVar[str] = "passwords"
    # (service, username) 唯一，由数据库保证而不是调用方先查后插
    __table_args__ = (UniqueConstraint("service", "username", name="uq_passwords_identity"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    service: str = Field(index=True)
    username: str
    password: str = ""
    notes: str = ""
    expiry: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def to_entry(self) -> Entry:
        return Entry(
            service=self.service,
            username=self.username,
            password=self.password,
            notes=self.notes,
            expiry=self.expiry,
        )


class VaultMeta(SQLModel, table=True):
    __tablename__: ClassVar[str] = "vault_meta"
    id: int = Field(default=1, primary_key=True)
    kdf_salt: Optional[str] = None
    validation_token: Optional[str] = None
