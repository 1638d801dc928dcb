"""Begin/finish sequencing for registration and authentication ceremonies."""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from . import options as options_builder
from . import verifier
from .challenges import AUTHENTICATION, REGISTRATION, ChallengeGenerator, SessionStore
from .config import RPSettings
from .database import Database
from .encoding import b64url_decode, b64url_encode
from .errors import CeremonyError, ErrorKind, malformed
from .models import CredentialRecord, User
from .repository import CredentialRepository, UserDirectory

LOGGER = logging.getLogger(__name__)

STAGE_LABELS = {
    "register": "Register",
    "authn": "Authenticate",
}

EVENT_LABELS = {
    ("register", "options.start"): "Creating Register Options",
    ("register", "user.create"): "Created user record",
    ("register", "options.success"): "Issued Register Options",
    ("register", "verify.start"): "Verifying Registration",
    ("register", "verify.expired"): "Registration Challenge Expired",
    ("register", "verify.failed"): "Registration Rejected",
    ("register", "verify.success"): "Registration Completed",
    ("authn", "options.start"): "Creating Authentication Options",
    ("authn", "options.success"): "Issued Authentication Options",
    ("authn", "verify.start"): "Verifying Authentication",
    ("authn", "verify.expired"): "Authentication Challenge Expired",
    ("authn", "verify.failed"): "Authentication Rejected",
    ("authn", "verify.success"): "Authentication Completed",
}


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True)
    message = f"[RP Server: {stage_label}]: {event_label}\n{payload}"
    LOGGER.log(level, message)


@dataclass(frozen=True)
class SessionContext:
    """The caller's HTTP session: its opaque id and the logged-in user, if any."""

    session_id: str
    user_id: Optional[str] = None


class CeremonyOrchestrator:
    def __init__(
        self,
        settings: RPSettings,
        database: Database,
        session_store: SessionStore,
        generator: Optional[ChallengeGenerator] = None,
    ) -> None:
        self.settings = settings
        self.db = database
        self.session_store = session_store
        self.generator = generator or ChallengeGenerator(settings.challenge_size)

    @property
    def relying_party(self):
        return self.settings.relying_party

    def _consume_challenge(self, stage: str, context: SessionContext, kind: str, req_id: str) -> bytes:
        challenge = self.session_store.pop(context.session_id, kind)
        if challenge is None:
            _log(stage, "verify.expired", req_id, level=logging.WARNING, user_id=context.user_id)
            raise CeremonyError(ErrorKind.MISSING_OR_EXPIRED_CHALLENGE)
        return challenge

    # Registration ------------------------------------------------------
    def start_registration(self, context: SessionContext, username: str) -> Tuple[Dict[str, Any], User]:
        """Create the user and issue creation options for it.

        The returned user should be bound to the caller's session so that the
        finish request can attach the credential to it.
        """
        req_id = secrets.token_hex(4)
        _log("register", "options.start", req_id, user=username)
        with self.db.session() as session:
            user = UserDirectory(session).create(username)
            _log("register", "user.create", req_id, user_id=user.id)
            existing = CredentialRepository(session).list_for_user(user.id)
        creation_options, challenge = options_builder.begin_registration(
            user.id,
            user.username,
            self.relying_party,
            self.generator,
            self.settings.algorithms,
            existing_credential_ids=[record.credential_id for record in existing],
            timeout=self.settings.timeout_ms,
            user_verification=self.settings.user_verification,
        )
        self.session_store.set(context.session_id, REGISTRATION, challenge)
        _log(
            "register",
            "options.success",
            req_id,
            user=username,
            user_id=user.id,
            credential_count=len(existing),
        )
        return {"publicKey": creation_options.model_dump()}, user

    def finish_registration(self, context: SessionContext, payload: Mapping[str, Any]) -> CredentialRecord:
        req_id = secrets.token_hex(4)
        _log("register", "verify.start", req_id, user_id=context.user_id)
        challenge = self._consume_challenge("register", context, REGISTRATION, req_id)
        try:
            if context.user_id is None:
                raise CeremonyError(ErrorKind.NOT_AUTHENTICATED, "No user bound to session")
            with self.db.session() as session:
                user = UserDirectory(session).find_by_id(context.user_id)
                if user is None:
                    raise CeremonyError(ErrorKind.NOT_AUTHENTICATED, "Session user no longer exists")
                repository = CredentialRepository(session)
                record = verifier.finish_registration(
                    challenge,
                    self.relying_party,
                    payload,
                    repository.is_unregistered,
                    self.settings.algorithms,
                    require_user_verification=self.settings.require_user_verification,
                )
                record = repository.persist_new_credential(replace(record, owner_user_id=user.id))
        except CeremonyError as exc:
            _log(
                "register",
                "verify.failed",
                req_id,
                level=logging.WARNING,
                user_id=context.user_id,
                kind=exc.kind.value,
                detail=exc.detail,
            )
            raise
        _log(
            "register",
            "verify.success",
            req_id,
            user_id=record.owner_user_id,
            credential_id=record.encoded_id,
            algorithm=record.algorithm,
            sign_count=record.sign_count,
        )
        return record

    # Authentication ----------------------------------------------------
    def start_authentication(self, context: SessionContext, username: Optional[str] = None) -> Dict[str, Any]:
        req_id = secrets.token_hex(4)
        _log("authn", "options.start", req_id, user=username)
        allowed = None
        if username:
            with self.db.session() as session:
                repository = CredentialRepository(session)
                allowed = [
                    record.credential_id
                    for user in UserDirectory(session).find_by_username(username)
                    for record in repository.list_for_user(user.id)
                ]
        request_options, challenge = options_builder.begin_authentication(
            self.relying_party,
            self.generator,
            allowed_credential_ids=allowed,
            timeout=self.settings.timeout_ms,
            user_verification=self.settings.user_verification,
        )
        self.session_store.set(context.session_id, AUTHENTICATION, challenge)
        _log(
            "authn",
            "options.success",
            req_id,
            user=username,
            credential_count=len(allowed) if allowed is not None else None,
            discoverable=allowed is None,
        )
        return {"publicKey": request_options.model_dump()}

    def finish_authentication(self, context: SessionContext, payload: Mapping[str, Any]) -> User:
        """Verify an assertion and return the user that owns the credential."""
        req_id = secrets.token_hex(4)
        _log("authn", "verify.start", req_id, session_user=context.user_id)
        challenge = self._consume_challenge("authn", context, AUTHENTICATION, req_id)
        try:
            if not isinstance(payload, Mapping):
                raise malformed("Credential payload must be an object")
            credential_id = b64url_decode(payload.get("id"))
            with self.db.session() as session:
                repository = CredentialRepository(session)
                stored = repository.lookup_by_credential_id(credential_id)
                if stored is None:
                    raise CeremonyError(ErrorKind.UNKNOWN_CREDENTIAL)
                self._check_user_handle(payload, stored)
                new_sign_count = verifier.finish_authentication(
                    challenge,
                    self.relying_party,
                    payload,
                    stored.public_key,
                    stored.sign_count,
                    require_user_verification=self.settings.require_user_verification,
                )
                repository.update_sign_count(credential_id, new_sign_count, stored.sign_count)
                user = UserDirectory(session).find_by_id(stored.owner_user_id)
                if user is None:
                    raise CeremonyError(ErrorKind.UNKNOWN_CREDENTIAL, "Credential owner missing")
        except CeremonyError as exc:
            _log(
                "authn",
                "verify.failed",
                req_id,
                level=logging.WARNING,
                kind=exc.kind.value,
                detail=exc.detail,
            )
            raise
        _log(
            "authn",
            "verify.success",
            req_id,
            user_id=user.id,
            credential_id=b64url_encode(credential_id),
            sign_count=new_sign_count,
        )
        return user

    @staticmethod
    def _check_user_handle(payload: Mapping[str, Any], stored: CredentialRecord) -> None:
        response = payload.get("response")
        user_handle = response.get("userHandle") if isinstance(response, Mapping) else None
        if not user_handle:
            return
        expected = options_builder.user_handle_for(stored.owner_user_id or "")
        if b64url_decode(user_handle) != expected:
            raise CeremonyError(ErrorKind.UNKNOWN_CREDENTIAL, "User handle does not own credential")
