"""Typed exception hierarchy for sync errors.

Provides structured exceptions for differentiated error handling
(auth errors vs transient network errors vs data issues), plus the
engine-level errors that decide whether a failure is recorded per
account, per connection, or aborts a whole batch.
"""


class AggregatorError(Exception):
    """Base exception for all aggregator-related errors.

    Carries the provider name so callers can identify which aggregator failed.
    """

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)


class AggregatorAuthError(AggregatorError):
    """Credentials missing, expired, or invalid (HTTP 401/403, login required)."""

    pass


class AggregatorConnectionError(AggregatorError):
    """Network failures such as timeouts or refused connections.

    Retriable by default.
    """

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        self.retriable = retriable
        super().__init__(message, provider_name)


class AggregatorAPIError(AggregatorError):
    """HTTP 4xx/5xx responses from the aggregator API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class AggregatorDataError(AggregatorError):
    """Malformed or unparseable response from the aggregator."""

    pass


class ConfigurationError(Exception):
    """Missing credentials or a mismatched environment.

    Fatal to a whole batch invocation; raised before any connection is
    attempted.
    """

    pass


class CategorizationError(Exception):
    """The AI categorization call failed or returned an unusable reply."""

    pass


class SyncInProgressError(Exception):
    """Another worker currently holds the ``syncing`` claim for an account."""

    def __init__(self, account_id: str, domain: str):
        self.account_id = account_id
        self.domain = domain
        super().__init__(f"{domain} sync already in progress for account {account_id}")


class JobAlreadyRunningError(Exception):
    """A background job for the same entity is already ``processing``."""

    def __init__(self, job_type: str, entity_id: str):
        self.job_type = job_type
        self.entity_id = entity_id
        super().__init__(f"{job_type} job already processing for {entity_id}")
