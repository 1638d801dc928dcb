"""Database models and the credential record they persist."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .encoding import b64url_decode, b64url_encode


def _new_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_user_id)
    username: Mapped[str] = mapped_column(String(128), index=True)

    credentials: Mapped[list["Credential"]] = relationship(back_populates="user")


class Credential(Base):
    __tablename__ = "passkeys"

    id: Mapped[str] = mapped_column(String(1366), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    public_key: Mapped[str] = mapped_column(Text)
    algorithm: Mapped[int] = mapped_column(Integer)
    sign_count: Mapped[int] = mapped_column(BigInteger, default=0)

    user: Mapped[User] = relationship(back_populates="credentials")

    def to_record(self) -> "CredentialRecord":
        return CredentialRecord(
            credential_id=b64url_decode(self.id),
            public_key=b64url_decode(self.public_key),
            algorithm=self.algorithm,
            sign_count=self.sign_count,
            owner_user_id=self.user_id,
        )


@dataclass(frozen=True)
class CredentialRecord:
    credential_id: bytes
    public_key: bytes
    algorithm: int
    sign_count: int = 0
    owner_user_id: Optional[str] = None

    @property
    def encoded_id(self) -> str:
        return b64url_encode(self.credential_id)

    def to_model(self) -> Credential:
        if self.owner_user_id is None:
            raise ValueError("Credential record has no owner")
        return Credential(
            id=self.encoded_id,
            user_id=self.owner_user_id,
            public_key=b64url_encode(self.public_key),
            algorithm=self.algorithm,
            sign_count=self.sign_count,
        )
