"""Flask application exposing the passkey ceremony endpoints."""

from __future__ import annotations

import logging
import secrets

from flask import Flask, jsonify, request, session
from flask_cors import CORS

from .ceremony import CeremonyOrchestrator, SessionContext
from .challenges import InMemorySessionStore
from .config import RPSettings
from .database import Database
from .errors import CeremonyError, ErrorKind
from .repository import UserDirectory
from .schemas import RPResponse

LOGGER = logging.getLogger(__name__)

GENERIC_FAILURE = "Authentication failed"


def _session_context(user_key: str = "user_id") -> SessionContext:
    sid = session.get("sid")
    if not sid:
        sid = secrets.token_urlsafe(24)
        session["sid"] = sid
    return SessionContext(session_id=sid, user_id=session.get(user_key))


def _json_body():
    # validated by the orchestrator after the pending challenge is consumed
    return request.get_json(silent=True)


def _failure(message: str, status: int):
    return jsonify(RPResponse(success=False, message=message).model_dump()), status


def create_app(settings: RPSettings | None = None) -> Flask:
    settings = settings or RPSettings()
    db = Database(settings)
    db.create_all()
    orchestrator = CeremonyOrchestrator(
        settings,
        db,
        InMemorySessionStore(ttl=settings.challenge_ttl),
    )

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    CORS(app, supports_credentials=True, origins=[settings.origin])
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    @app.get("/register")
    def register_options():
        username = (request.args.get("username") or "").strip()
        if not username:
            return _failure("username is required", 400)
        context = _session_context()
        creation_options, user = orchestrator.start_registration(context, username)
        # not logged in until a credential has been registered for it
        session["pending_user_id"] = user.id
        return jsonify(creation_options)

    @app.post("/register")
    def register_verify():
        context = _session_context("pending_user_id")
        session.pop("pending_user_id", None)
        record = orchestrator.finish_registration(context, _json_body())
        session["user_id"] = record.owner_user_id
        return jsonify(RPResponse(success=True, data={"credentialId": record.encoded_id}).model_dump())

    @app.get("/login")
    def login_options():
        context = _session_context()
        username = (request.args.get("username") or "").strip() or None
        return jsonify(orchestrator.start_authentication(context, username))

    @app.post("/login")
    def login_verify():
        context = _session_context()
        user = orchestrator.finish_authentication(context, _json_body())
        session["user_id"] = user.id
        return jsonify(RPResponse(success=True).model_dump())

    @app.get("/private")
    def private():
        user_id = session.get("user_id")
        if user_id:
            with db.session() as db_session:
                user = UserDirectory(db_session).find_by_id(user_id)
            if user is not None:
                return jsonify(
                    RPResponse(success=True, data={"id": user.id, "username": user.username}).model_dump()
                )
        return _failure("Not authenticated", 401)

    @app.get("/logout")
    def logout():
        session.pop("user_id", None)
        return jsonify(RPResponse(success=True).model_dump())

    @app.errorhandler(CeremonyError)
    def handle_ceremony_error(error: CeremonyError):
        LOGGER.warning("Ceremony failed on %s: %s", request.path, error)
        if error.kind is ErrorKind.MALFORMED_INPUT:
            return _failure("Malformed request", 400)
        if error.kind is ErrorKind.NOT_AUTHENTICATED:
            return _failure("Not authenticated", 401)
        return _failure(GENERIC_FAILURE, 401)

    @app.errorhandler(400)
    def handle_bad_request(error):
        message = getattr(error, "description", "Bad Request")
        return _failure(message, 400)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
