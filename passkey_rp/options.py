"""Builders for the option payloads that start each ceremony."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

from .challenges import ChallengeGenerator
from .config import RelyingParty
from .encoding import b64url_encode
from .schemas import (
    AuthenticationOptions,
    AuthenticatorSelectionCriteria,
    PubKeyCredParam,
    PublicKeyCredentialDescriptor,
    RegistrationOptions,
    RelyingPartyEntity,
    UserEntity,
    UserVerification,
)


def user_handle_for(user_id: str) -> bytes:
    """Protocol-level user id: the UTF-8 bytes of the internal identifier."""
    return user_id.encode("utf-8")


def _descriptors(credential_ids: Iterable[bytes]) -> list[PublicKeyCredentialDescriptor]:
    return [PublicKeyCredentialDescriptor(id=b64url_encode(cred_id)) for cred_id in credential_ids]


def begin_registration(
    user_id: str,
    username: str,
    relying_party: RelyingParty,
    generator: ChallengeGenerator,
    algorithms: Sequence[int],
    existing_credential_ids: Iterable[bytes] = (),
    display_name: Optional[str] = None,
    timeout: int = 90_000,
    user_verification: UserVerification = "preferred",
) -> Tuple[RegistrationOptions, bytes]:
    challenge = generator.generate()
    options = RegistrationOptions(
        challenge=b64url_encode(challenge),
        rp=RelyingPartyEntity(id=relying_party.id, name=relying_party.name),
        user=UserEntity(
            id=b64url_encode(user_handle_for(user_id)),
            name=username,
            displayName=display_name or username,
        ),
        pubKeyCredParams=[PubKeyCredParam(alg=alg) for alg in algorithms],
        timeout=timeout,
        authenticatorSelection=AuthenticatorSelectionCriteria(
            userVerification=user_verification,
        ),
        excludeCredentials=_descriptors(existing_credential_ids),
    )
    return options, challenge


def begin_authentication(
    relying_party: RelyingParty,
    generator: ChallengeGenerator,
    allowed_credential_ids: Optional[Iterable[bytes]] = None,
    timeout: int = 90_000,
    user_verification: UserVerification = "preferred",
) -> Tuple[AuthenticationOptions, bytes]:
    """Build request options; no allow list means any discoverable credential."""
    challenge = generator.generate()
    options = AuthenticationOptions(
        challenge=b64url_encode(challenge),
        rpId=relying_party.id,
        timeout=timeout,
        userVerification=user_verification,
        allowCredentials=_descriptors(allowed_credential_ids or ()),
    )
    return options, challenge
