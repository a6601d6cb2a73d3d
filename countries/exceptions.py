class RefreshError(Exception):
    """Base class for failures raised by the refresh pipeline."""


class ConfigurationError(RefreshError):
    """A required setting (e.g. an external source URL) is missing or malformed."""


class ExternalFetchFailed(RefreshError):
    """One of the external data sources could not be fetched or validated.

    ``endpoint`` is the first failing URL; ``failures`` maps every failing
    URL to its reason.
    """

    def __init__(self, endpoint, reason, failures=None):
        self.endpoint = endpoint
        self.reason = reason
        self.failures = dict(failures or {endpoint: reason})
        super().__init__(f"{endpoint}: {reason}")


class NoValidData(RefreshError):
    """Every raw country record was rejected during normalization."""

    def __init__(self, rejected):
        self.rejected = rejected
        super().__init__(f"No valid country data found ({rejected} records rejected)")


class PersistenceFailure(RefreshError):
    """The transactional upsert failed and was rolled back."""


class ArtifactPublishFailure(RefreshError):
    """The summary artifact could not be rendered or written."""
