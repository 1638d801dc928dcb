"""Ceremony error taxonomy."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    MALFORMED_INPUT = "MalformedInput"
    WRONG_CEREMONY_TYPE = "WrongCeremonyType"
    CHALLENGE_MISMATCH = "ChallengeMismatch"
    ORIGIN_MISMATCH = "OriginMismatch"
    RELYING_PARTY_ID_MISMATCH = "RelyingPartyIDMismatch"
    USER_NOT_PRESENT = "UserNotPresent"
    USER_NOT_VERIFIED = "UserNotVerified"
    CREDENTIAL_ALREADY_REGISTERED = "CredentialAlreadyRegistered"
    UNSUPPORTED_ALGORITHM = "UnsupportedAlgorithm"
    SIGNATURE_INVALID = "SignatureInvalid"
    SIGN_COUNT_REGRESSION = "SignCountRegression"
    UNKNOWN_CREDENTIAL = "UnknownCredential"
    MISSING_OR_EXPIRED_CHALLENGE = "MissingOrExpiredChallenge"
    DUPLICATE_CREDENTIAL_ID = "DuplicateCredentialID"
    NOT_AUTHENTICATED = "NotAuthenticated"


class CeremonyError(RuntimeError):
    """Terminal failure of a registration or authentication attempt.

    ``detail`` is meant for logs only; callers facing the end user should
    report a generic failure for every verification kind.
    """

    def __init__(self, kind: ErrorKind, detail: str | None = None) -> None:
        self.kind = kind
        self.detail = detail or kind.value
        super().__init__(f"{kind.value}: {self.detail}")


def malformed(detail: str) -> CeremonyError:
    return CeremonyError(ErrorKind.MALFORMED_INPUT, detail)
