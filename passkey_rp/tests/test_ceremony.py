from __future__ import annotations

import logging

import pytest

from passkey_rp.ceremony import SessionContext
from passkey_rp.challenges import AUTHENTICATION, REGISTRATION
from passkey_rp.encoding import b64url_decode, b64url_encode
from passkey_rp.errors import CeremonyError, ErrorKind
from passkey_rp.repository import CredentialRepository
from passkey_rp.tests.authenticator import SoftwareAuthenticator

from .conftest import ORIGIN


def register(orchestrator, context, authenticator, username="alice", origin=ORIGIN):
    options, user = orchestrator.start_registration(context, username)
    bound = SessionContext(context.session_id, user.id)
    response = authenticator.make_credential(options, origin)
    return bound, response


def enroll(orchestrator, context, authenticator, username="alice"):
    bound, response = register(orchestrator, context, authenticator, username)
    return bound, orchestrator.finish_registration(bound, response)


def stored_sign_count(database, credential_id: bytes) -> int:
    with database.session() as session:
        return CredentialRepository(session).lookup_by_credential_id(credential_id).sign_count


@pytest.mark.parametrize("algorithm", [-7, -8, -257])
def test_registration_then_authentication(orchestrator, database, context, algorithm):
    authenticator = SoftwareAuthenticator(algorithm)
    bound, record = enroll(orchestrator, context, authenticator)
    assert record.sign_count == 0
    assert record.owner_user_id == bound.user_id

    options = orchestrator.start_authentication(context)
    assert options["publicKey"]["allowCredentials"] == []
    response = authenticator.get_assertion(options, ORIGIN, sign_count=1)
    user = orchestrator.finish_authentication(context, response)

    assert user.id == bound.user_id
    assert stored_sign_count(database, record.credential_id) == 1


def test_registration_stores_challenge_in_session(orchestrator, session_store, context):
    options, _ = orchestrator.start_registration(context, "alice")
    stored = session_store.get(context.session_id, REGISTRATION)
    assert b64url_decode(options["publicKey"]["challenge"]) == stored


def test_replayed_registration_fails(orchestrator, context, authenticator):
    bound, response = register(orchestrator, context, authenticator)
    orchestrator.finish_registration(bound, response)
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_registration(bound, response)
    assert excinfo.value.kind is ErrorKind.MISSING_OR_EXPIRED_CHALLENGE


def test_failed_registration_consumes_challenge(orchestrator, session_store, context, authenticator):
    bound, response = register(orchestrator, context, authenticator, origin="https://evil.test")
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_registration(bound, response)
    assert excinfo.value.kind is ErrorKind.ORIGIN_MISMATCH
    assert session_store.get(context.session_id, REGISTRATION) is None


def test_registration_requires_session_user(orchestrator, context, authenticator):
    _, response = register(orchestrator, context, authenticator)
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_registration(context, response)
    assert excinfo.value.kind is ErrorKind.NOT_AUTHENTICATED


def test_same_authenticator_cannot_register_twice(orchestrator, authenticator):
    first = SessionContext("session-a")
    _, record = enroll(orchestrator, first, authenticator)

    second = SessionContext("session-b")
    options, user = orchestrator.start_registration(second, "mallory")
    response = authenticator.make_credential(
        options, ORIGIN, credential_id=record.credential_id
    )
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_registration(SessionContext("session-b", user.id), response)
    assert excinfo.value.kind is ErrorKind.CREDENTIAL_ALREADY_REGISTERED


def test_allow_list_for_named_user(orchestrator, context, authenticator):
    _, record = enroll(orchestrator, context, authenticator, username="bob")
    options = orchestrator.start_authentication(context, "bob")
    assert options["publicKey"]["allowCredentials"] == [
        {"id": b64url_encode(record.credential_id), "type": "public-key"}
    ]
    assert orchestrator.start_authentication(context, "nobody")["publicKey"]["allowCredentials"] == []


def test_equal_counter_is_rejected(orchestrator, database, context, authenticator):
    _, record = enroll(orchestrator, context, authenticator)
    options = orchestrator.start_authentication(context)
    orchestrator.finish_authentication(context, authenticator.get_assertion(options, ORIGIN, sign_count=4))

    options = orchestrator.start_authentication(context)
    response = authenticator.get_assertion(options, ORIGIN, sign_count=4)
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_authentication(context, response)
    assert excinfo.value.kind is ErrorKind.SIGN_COUNT_REGRESSION
    assert stored_sign_count(database, record.credential_id) == 4


def test_unknown_credential(orchestrator, session_store, context, authenticator):
    enroll(orchestrator, context, authenticator)
    options = orchestrator.start_authentication(context)
    response = authenticator.get_assertion(options, ORIGIN)
    response["id"] = response["rawId"] = b64url_encode(b"never-registered")
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_authentication(context, response)
    assert excinfo.value.kind is ErrorKind.UNKNOWN_CREDENTIAL
    assert session_store.get(context.session_id, AUTHENTICATION) is None


def test_user_handle_must_match_owner(orchestrator, context, authenticator):
    enroll(orchestrator, context, authenticator)
    options = orchestrator.start_authentication(context)
    response = authenticator.get_assertion(options, ORIGIN)
    response["response"]["userHandle"] = b64url_encode(b"someone-else")
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_authentication(context, response)
    assert excinfo.value.kind is ErrorKind.UNKNOWN_CREDENTIAL


def test_authentication_without_challenge(orchestrator, context, authenticator):
    enroll(orchestrator, context, authenticator)
    options = orchestrator.start_authentication(context)
    response = authenticator.get_assertion(options, ORIGIN)
    orchestrator.finish_authentication(context, response)
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.finish_authentication(context, response)
    assert excinfo.value.kind is ErrorKind.MISSING_OR_EXPIRED_CHALLENGE


def test_failures_are_logged_with_kind(orchestrator, context, authenticator, caplog):
    bound, response = register(orchestrator, context, authenticator, origin="https://evil.test")
    with caplog.at_level(logging.WARNING, logger="passkey_rp.ceremony"):
        with pytest.raises(CeremonyError):
            orchestrator.finish_registration(bound, response)
    assert "Registration Rejected" in caplog.text
    assert "OriginMismatch" in caplog.text
