"""Error taxonomy shared by the engine services and mapped to HTTP codes in the routes."""
from __future__ import annotations


class CivicPulseError(Exception):
    pass


class OracleUnavailable(CivicPulseError):
    """Classifier or narrative oracle failed or timed out. Always recovered locally."""


class PersistenceError(CivicPulseError):
    """Storage unreachable or a constraint could not be satisfied."""


class InvalidState(CivicPulseError):
    pass


class NotFound(CivicPulseError):
    pass


class Forbidden(CivicPulseError):
    pass
