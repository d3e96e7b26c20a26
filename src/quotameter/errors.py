from quotameter.models import Status


class QuotameterError(Exception):
    """Base error for quotameter."""

    status: "Status" = Status.ERROR


class SourceAuthError(QuotameterError):
    """Upstream rejected the configured credentials."""

    status = Status.AUTH_REQUIRED


class SourceRateLimitedError(QuotameterError):
    """Upstream is throttling the account."""

    status = Status.LIMITED


class SourceUnavailableError(QuotameterError):
    """Upstream could not be reached or answered with an error."""

    status = Status.ERROR
