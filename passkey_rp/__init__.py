"""Passkey relying-party server exposing the Flask app factory."""

from .app import create_app
from .ceremony import CeremonyOrchestrator, SessionContext
from .config import RelyingParty, RPSettings
from .errors import CeremonyError, ErrorKind

__all__ = [
    "create_app",
    "CeremonyOrchestrator",
    "SessionContext",
    "RelyingParty",
    "RPSettings",
    "CeremonyError",
    "ErrorKind",
]
