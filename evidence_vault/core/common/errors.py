# File: evidence_vault/core/common/errors.py

class VaultError(Exception):
    """
    Base for every error the pipeline raises on purpose.
    `category` is the stable, caller-visible name of the failure.
    """
    category = "internal"


class ValidationError(VaultError):
    """Bad input. Rejected synchronously and never persisted."""
    category = "validation"


class PayloadTooLarge(ValidationError):
    category = "payload_too_large"


class RecordNotFound(VaultError):
    category = "not_found"


class ContentNotFound(VaultError):
    """A collaborator no longer knows the identifier we gave it."""
    category = "content_not_found"


class CollaboratorUnavailable(VaultError):
    """Transient collaborator failure (network, timeout, provider down). Eligible for retry."""
    category = "collaborator_unavailable"


class FundingPending(CollaboratorUnavailable):
    """The deal store cannot accept work until its payment account is funded."""


class CollaboratorBusy(CollaboratorUnavailable):
    """No free slot to run the call on; the collaborator was never contacted."""


class TerminalCollaboratorError(VaultError):
    """Permanent collaborator failure (e.g. invalid content). No automatic retry."""
    category = "terminal_collaborator_error"


class ConcurrencyConflict(VaultError):
    """A conditional update lost a race; another actor already moved the record."""
    category = "concurrency_conflict"


class InvalidTransition(VaultError):
    """The requested state change is not allowed from the record's current state."""
    category = "invalid_transition"


def error_category(exc: BaseException) -> str:
    """Category for any exception. Unexpected ones count as transient collaborator failures."""
    if isinstance(exc, VaultError):
        return exc.category
    return CollaboratorUnavailable.category


def is_retryable(exc: BaseException) -> bool:
    """
    Retryable vs terminal classification for collaborator failures.
    Only an explicit TerminalCollaboratorError (or ContentNotFound) stops retries;
    everything else, including unknown exceptions, is bounded by the attempt cap instead.
    """
    return not isinstance(exc, (TerminalCollaboratorError, ContentNotFound, ValidationError))
