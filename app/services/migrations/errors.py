"""Error taxonomy for CRM migrations.

Run-level errors (credentials, exhausted retries, provider failures,
timeouts) abort the run. Record-level errors (mapping, write conflicts) are
collected and the run continues.
"""

from __future__ import annotations


class MigrationEngineError(Exception):
    """Base exception for migration engine errors."""

    fatal = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CredentialError(MigrationEngineError):
    """Provider rejected the API key (401/403)."""

    fatal = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderError(MigrationEngineError):
    """Provider returned an unusable response."""

    fatal = True

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class TransientProviderError(ProviderError):
    """Retryable provider failure (429, 5xx, network)."""


class RetryBudgetExhaustedError(TransientProviderError):
    """A transient failure outlived the retry budget."""

    def __init__(self, message: str, attempts: int, status_code: int | None = None):
        super().__init__(message, status_code=status_code)
        self.attempts = attempts


class RecordMappingError(MigrationEngineError):
    """A single provider record could not be normalized."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class WriteConflictError(MigrationEngineError):
    """Another writer created the same external id mapping concurrently."""


class MigrationTimeoutError(MigrationEngineError):
    """The run exceeded its wall-clock budget."""

    fatal = True

    def __init__(self, message: str, elapsed_seconds: float | None = None):
        super().__init__(message)
        self.elapsed_seconds = elapsed_seconds


class MigrationInProgressError(MigrationEngineError):
    """Another live migration holds the org's lock."""

    def __init__(self, org_id: str, migration_id: str | None = None):
        super().__init__(f"A migration is already running for org {org_id}")
        self.org_id = org_id
        self.migration_id = migration_id


class UnsupportedSourceError(MigrationEngineError):
    """The requested provider has no adapter."""


class RunAlreadyFinalizedError(MigrationEngineError):
    """A migration run record was finalized twice."""
