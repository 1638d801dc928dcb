"""Pydantic schemas for request/response payloads."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import malformed

UserVerification = Literal["required", "preferred", "discouraged"]


class RelyingPartyEntity(BaseModel):
    id: str
    name: str


class UserEntity(BaseModel):
    id: str = Field(min_length=1)
    name: str
    displayName: str


class PubKeyCredParam(BaseModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class PublicKeyCredentialDescriptor(BaseModel):
    id: str
    type: Literal["public-key"] = "public-key"


class AuthenticatorSelectionCriteria(BaseModel):
    residentKey: Literal["required", "preferred", "discouraged"] = "preferred"
    requireResidentKey: bool = False
    userVerification: UserVerification = "preferred"


class RegistrationOptions(BaseModel):
    challenge: str
    rp: RelyingPartyEntity
    user: UserEntity
    pubKeyCredParams: List[PubKeyCredParam]
    timeout: int = 90_000
    attestation: Literal["none"] = "none"
    authenticatorSelection: AuthenticatorSelectionCriteria = Field(
        default_factory=AuthenticatorSelectionCriteria
    )
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def ensure_algorithms(self) -> "RegistrationOptions":
        if not self.pubKeyCredParams:
            raise ValueError("pubKeyCredParams cannot be empty")
        return self


class AuthenticationOptions(BaseModel):
    challenge: str
    rpId: str
    timeout: int = 90_000
    userVerification: UserVerification = "preferred"
    allowCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class _ClientResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    clientDataJSON: str


class AttestationResponse(_ClientResponse):
    attestationObject: str


class AssertionResponse(_ClientResponse):
    authenticatorData: str
    signature: str
    userHandle: Optional[str] = None


class _PublicKeyCredential(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    rawId: str
    type: Literal["public-key"]

    @model_validator(mode="after")
    def ensure_ids_agree(self):
        if self.id != self.rawId:
            raise ValueError("id and rawId differ")
        return self


class RegistrationCredential(_PublicKeyCredential):
    response: AttestationResponse


class AuthenticationCredential(_PublicKeyCredential):
    response: AssertionResponse


class ClientData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    challenge: str
    origin: str
    crossOrigin: bool = False


class RPResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Optional[dict] = None


def parse_payload(model: type[BaseModel], payload: object):
    """Validate ``payload`` against ``model``, mapping failures to MalformedInput."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise malformed(f"Invalid {model.__name__}: {exc.error_count()} error(s)") from exc


def parse_payload_json(model: type[BaseModel], raw: bytes):
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise malformed(f"Invalid {model.__name__}: {exc.error_count()} error(s)") from exc
