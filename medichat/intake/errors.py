"""
Error taxonomy for the intake engine.

Routers map each class to an HTTP status via ``http_status``; everything
else in the engine raises and propagates these unchanged.
"""

from __future__ import annotations


class IntakeError(Exception):
    """Base class for every error the intake engine raises on purpose."""

    http_status: int = 500


class ValidationError(IntakeError):
    """Client input rejected (empty text, oversized text, bad field)."""

    http_status = 400


class NotFoundError(IntakeError):
    """Unknown conversation, or a conversation that belongs to someone else."""

    http_status = 404


class InvalidTransitionError(IntakeError):
    """A status change that would move a conversation backwards or sideways."""

    http_status = 409


class UpstreamServiceError(IntakeError):
    """Reasoning service unavailable, timed out, or returned nothing usable."""

    http_status = 502


class PersistenceError(IntakeError):
    """Conversation store unavailable or the write could not be applied."""

    http_status = 503


class ConversationConflictError(PersistenceError):
    """Optimistic-concurrency check failed: another writer got there first."""

    http_status = 409
