"""Pydantic based configuration for the passkey RP server."""

from __future__ import annotations

import secrets
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DB_PATH = DATA_DIR / "rp.db"

COSE_ES256 = -7
COSE_EDDSA = -8
COSE_RS256 = -257


class RelyingParty(BaseModel):
    """Trust anchor every ceremony is verified against."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    origin: str


class RPSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PASSKEY_RP_")

    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string used by the RP server",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    rp_name: str = Field(default="Passkey RP Server", description="Human readable RP name")
    origin: str = Field(
        default="http://localhost:8080",
        description="Expected origin for clientDataJSON validation",
    )
    algorithms: List[int] = Field(
        default_factory=lambda: [COSE_ES256, COSE_EDDSA, COSE_RS256],
        description="COSE algorithm identifiers the RP will accept",
    )
    challenge_size: int = Field(default=32, ge=16, description="Challenge length in bytes")
    challenge_ttl: float = Field(
        default=300.0,
        gt=0,
        description="Seconds an issued challenge stays in the session store",
    )
    timeout_ms: int = Field(default=90_000, description="Ceremony timeout hint for clients")
    require_user_verification: bool = Field(
        default=False,
        description="Reject ceremonies where the authenticator did not verify the user",
    )
    secret_key: str = Field(
        default_factory=lambda: secrets.token_hex(32),
        description="Flask secret used to sign the session cookie",
    )

    @property
    def relying_party(self) -> RelyingParty:
        return RelyingParty(id=self.rp_id, name=self.rp_name, origin=self.origin)

    @property
    def user_verification(self) -> str:
        return "required" if self.require_user_verification else "preferred"
