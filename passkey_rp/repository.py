"""User directory and credential repository over a SQLAlchemy session."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .encoding import b64url_encode
from .errors import CeremonyError, ErrorKind
from .models import Credential, CredentialRecord, User


class UserDirectory:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, username: str) -> User:
        user = User(username=username)
        self.session.add(user)
        self.session.flush()
        return user

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    def find_by_username(self, username: str) -> List[User]:
        return list(self.session.scalars(select(User).where(User.username == username)))


class CredentialRepository:
    """Credential records keyed by credential id.

    Records are only ever inserted or have their counter advanced; the owner
    of a credential never changes after registration.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def persist_new_credential(self, record: CredentialRecord) -> CredentialRecord:
        if self.session.get(Credential, record.encoded_id) is not None:
            raise CeremonyError(ErrorKind.DUPLICATE_CREDENTIAL_ID)
        self.session.add(record.to_model())
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise CeremonyError(ErrorKind.DUPLICATE_CREDENTIAL_ID) from exc
        return record

    def lookup_by_credential_id(self, credential_id: bytes) -> Optional[CredentialRecord]:
        credential = self.session.get(Credential, b64url_encode(credential_id))
        return credential.to_record() if credential else None

    def is_unregistered(self, credential_id: bytes) -> bool:
        return self.lookup_by_credential_id(credential_id) is None

    def list_for_user(self, user_id: str) -> List[CredentialRecord]:
        credentials = self.session.scalars(
            select(Credential).where(Credential.user_id == user_id).order_by(Credential.id)
        )
        return [credential.to_record() for credential in credentials]

    def update_sign_count(self, credential_id: bytes, new_count: int, expected_count: int) -> None:
        """Advance the counter only if nobody else moved it since it was read."""
        result = self.session.execute(
            update(Credential)
            .where(
                Credential.id == b64url_encode(credential_id),
                Credential.sign_count == expected_count,
            )
            .values(sign_count=new_count)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CeremonyError(
                ErrorKind.SIGN_COUNT_REGRESSION,
                "Stored counter changed during verification",
            )
