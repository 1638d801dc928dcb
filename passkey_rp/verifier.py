"""WebAuthn registration and assertion verification.

Both entry points are pure functions of their arguments: the expected
challenge, the relying party, the client's response and whatever stored
credential material the caller looked up. Every check is a hard gate that
raises :class:`CeremonyError` with a specific :class:`ErrorKind`; the gates
run in a fixed order so that origin and RP ID binding are established before
any signature is looked at.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Mapping, Optional, Protocol, Sequence

import cbor2
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from fido2.cose import CoseKey, UnsupportedKey

from .config import RelyingParty
from .encoding import b64url_decode
from .errors import CeremonyError, ErrorKind, malformed
from .models import CredentialRecord
from .schemas import (
    AuthenticationCredential,
    ClientData,
    RegistrationCredential,
    parse_payload,
    parse_payload_json,
)

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40

CREATE = "webauthn.create"
GET = "webauthn.get"

# COSE alg -> (kty, crv) a public key for that algorithm must declare
_KEY_SHAPES = {
    -7: (2, 1),  # ES256: EC2 P-256
    -35: (2, 2),  # ES384: EC2 P-384
    -36: (2, 3),  # ES512: EC2 P-521
    -8: (1, 6),  # EdDSA: OKP Ed25519
    -257: (3, None),  # RS256
    -37: (3, None),  # PS256
}

_CURVES = {
    1: ec.SECP256R1,
    2: ec.SECP384R1,
    3: ec.SECP521R1,
}


class CredentialIDChecker(Protocol):
    def __call__(self, credential_id: bytes) -> bool:
        """Return True when no account has registered ``credential_id`` yet."""
        ...


@dataclass(frozen=True)
class AuthenticatorData:
    rp_id_hash: bytes
    flags: int
    sign_count: int
    credential_id: Optional[bytes] = None
    credential_public_key: Optional[Mapping[Any, Any]] = None

    @property
    def user_present(self) -> bool:
        return bool(self.flags & FLAG_UP)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & FLAG_UV)


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    if len(data) < 37:
        raise malformed("Authenticator data too short")
    idx = 0
    rp_id_hash = data[idx : idx + 32]
    idx += 32
    flags = data[idx]
    idx += 1
    sign_count = int.from_bytes(data[idx : idx + 4], "big")
    idx += 4

    credential_id = None
    credential_public_key = None

    if flags & FLAG_AT:
        if len(data) < idx + 18:
            raise malformed("Malformed attested credential data")
        idx += 16  # AAGUID
        cred_len = int.from_bytes(data[idx : idx + 2], "big")
        idx += 2
        if cred_len == 0 or len(data) < idx + cred_len:
            raise malformed("Malformed credential id")
        credential_id = data[idx : idx + cred_len]
        idx += cred_len
        decoder = cbor2.CBORDecoder(BytesIO(data[idx:]))
        try:
            credential_public_key = decoder.decode()
        except (cbor2.CBORDecodeError, EOFError, ValueError) as exc:
            raise malformed("Invalid credential public key encoding") from exc
        if not isinstance(credential_public_key, Mapping):
            raise malformed("Credential public key is not a COSE map")

    return AuthenticatorData(
        rp_id_hash=rp_id_hash,
        flags=flags,
        sign_count=sign_count,
        credential_id=credential_id,
        credential_public_key=credential_public_key,
    )


def rp_id_hash(rp_id: str) -> bytes:
    return hashlib.sha256(rp_id.encode("idna")).digest()


def _verify_client_data(
    client_data_json: bytes,
    expected_type: str,
    expected_challenge: bytes,
    relying_party: RelyingParty,
) -> None:
    client_data = parse_payload_json(ClientData, client_data_json)
    if client_data.type != expected_type:
        raise CeremonyError(
            ErrorKind.WRONG_CEREMONY_TYPE,
            f"Expected {expected_type}, got {client_data.type}",
        )
    challenge = b64url_decode(client_data.challenge)
    if not hmac.compare_digest(challenge, expected_challenge):
        raise CeremonyError(ErrorKind.CHALLENGE_MISMATCH)
    if client_data.origin != relying_party.origin:
        raise CeremonyError(
            ErrorKind.ORIGIN_MISMATCH,
            f"Unexpected origin {client_data.origin!r}",
        )


def _verify_authenticator_flags(
    auth_data: AuthenticatorData,
    relying_party: RelyingParty,
    require_user_verification: bool,
) -> None:
    if not hmac.compare_digest(auth_data.rp_id_hash, rp_id_hash(relying_party.id)):
        raise CeremonyError(ErrorKind.RELYING_PARTY_ID_MISMATCH)
    if not auth_data.user_present:
        raise CeremonyError(ErrorKind.USER_NOT_PRESENT)
    if require_user_verification and not auth_data.user_verified:
        raise CeremonyError(ErrorKind.USER_NOT_VERIFIED)


def _load_public_key(cose: Mapping[Any, Any], kty: int, crv: Optional[int]) -> None:
    """Build the key with ``cryptography`` so unusable material fails at registration."""
    if kty == 2:
        ec.EllipticCurvePublicNumbers(
            int.from_bytes(cose[-2], "big"),
            int.from_bytes(cose[-3], "big"),
            _CURVES[crv](),
        ).public_key()
    elif kty == 1:
        ed25519.Ed25519PublicKey.from_public_bytes(cose[-2])
    else:
        rsa.RSAPublicNumbers(
            int.from_bytes(cose[-2], "big"),
            int.from_bytes(cose[-1], "big"),
        ).public_key()


def _check_public_key(cose: Mapping[Any, Any], algorithms: Sequence[int]) -> int:
    algorithm = cose.get(3)
    if not isinstance(algorithm, int) or algorithm not in algorithms:
        raise CeremonyError(ErrorKind.UNSUPPORTED_ALGORITHM, f"Algorithm {algorithm!r} not allowed")
    shape = _KEY_SHAPES.get(algorithm)
    if shape is None or CoseKey.for_alg(algorithm) is UnsupportedKey:
        raise CeremonyError(ErrorKind.UNSUPPORTED_ALGORITHM, f"No verifier for {algorithm}")
    kty, crv = shape
    if cose.get(1) != kty or (crv is not None and cose.get(-1) != crv):
        raise CeremonyError(
            ErrorKind.UNSUPPORTED_ALGORITHM,
            f"Key type {cose.get(1)!r}/curve {cose.get(-1)!r} does not fit algorithm {algorithm}",
        )
    try:
        _load_public_key(cose, kty, crv)
    except (KeyError, TypeError, ValueError) as exc:
        raise CeremonyError(ErrorKind.UNSUPPORTED_ALGORITHM, "Unusable public key") from exc
    return algorithm


def finish_registration(
    expected_challenge: bytes,
    relying_party: RelyingParty,
    client_response: Mapping[str, Any],
    is_credential_id_unregistered: CredentialIDChecker,
    algorithms: Sequence[int],
    require_user_verification: bool = False,
) -> CredentialRecord:
    """Verify an attestation and return the credential to persist.

    The returned record has no owner; the caller binds it to the user the
    ceremony was started for.
    """
    credential = parse_payload(RegistrationCredential, client_response)
    client_data_json = b64url_decode(credential.response.clientDataJSON)
    _verify_client_data(client_data_json, CREATE, expected_challenge, relying_party)

    try:
        attestation = cbor2.loads(b64url_decode(credential.response.attestationObject))
    except (cbor2.CBORDecodeError, EOFError, ValueError) as exc:
        raise malformed("Invalid attestationObject") from exc
    auth_data_bytes = attestation.get("authData") if isinstance(attestation, dict) else None
    if not isinstance(auth_data_bytes, (bytes, bytearray)):
        raise malformed("Invalid authenticator data")
    auth_data = parse_authenticator_data(bytes(auth_data_bytes))
    _verify_authenticator_flags(auth_data, relying_party, require_user_verification)

    if auth_data.credential_id is None or auth_data.credential_public_key is None:
        raise malformed("Missing attested credential data")
    if b64url_decode(credential.rawId) != auth_data.credential_id:
        raise malformed("Credential id does not match attested credential data")
    if not is_credential_id_unregistered(auth_data.credential_id):
        raise CeremonyError(ErrorKind.CREDENTIAL_ALREADY_REGISTERED)

    algorithm = _check_public_key(auth_data.credential_public_key, algorithms)
    return CredentialRecord(
        credential_id=auth_data.credential_id,
        public_key=cbor2.dumps(dict(auth_data.credential_public_key)),
        algorithm=algorithm,
        sign_count=auth_data.sign_count,
    )


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> None:
    """Check ``signature`` with the COSE key, dispatching on its ``alg``."""
    try:
        cose_key = CoseKey.parse(cbor2.loads(public_key))
        cose_key.verify(message, signature)
    except (
        InvalidSignature,
        cbor2.CBORDecodeError,
        EOFError,
        ValueError,
        TypeError,
        KeyError,
        AttributeError,
        NotImplementedError,
    ) as exc:
        raise CeremonyError(ErrorKind.SIGNATURE_INVALID) from exc


def check_sign_count(reported: int, stored: int) -> None:
    if reported == 0 and stored == 0:
        return
    if reported <= stored:
        raise CeremonyError(
            ErrorKind.SIGN_COUNT_REGRESSION,
            f"Counter {reported} does not exceed stored {stored}",
        )


def finish_authentication(
    expected_challenge: bytes,
    relying_party: RelyingParty,
    client_response: Mapping[str, Any],
    stored_public_key: bytes,
    stored_sign_count: int,
    require_user_verification: bool = False,
) -> int:
    """Verify an assertion and return the authenticator's new counter."""
    credential = parse_payload(AuthenticationCredential, client_response)
    client_data_json = b64url_decode(credential.response.clientDataJSON)
    _verify_client_data(client_data_json, GET, expected_challenge, relying_party)

    auth_data_bytes = b64url_decode(credential.response.authenticatorData)
    auth_data = parse_authenticator_data(auth_data_bytes)
    _verify_authenticator_flags(auth_data, relying_party, require_user_verification)

    signature = b64url_decode(credential.response.signature)
    message = auth_data_bytes + hashlib.sha256(client_data_json).digest()
    verify_signature(stored_public_key, message, signature)

    check_sign_count(auth_data.sign_count, stored_sign_count)
    return auth_data.sign_count
