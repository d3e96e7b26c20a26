from typing import Protocol

from quotameter.models import ApiBundle, SessionBundle


class UsageSource(Protocol):
    """
    UsageSource stands as a common protocol that all
    telemetry sources must satisfy.

    Sources only fetch: they return the raw payloads or lines of one
    pass and leave normalization to the pipeline. Upstream failures
    are raised as quotameter.errors.QuotameterError subclasses.
    """

    @property
    def name(self) -> "str": ...

    @property
    def account(self) -> "str": ...

    async def fetch(self) -> "ApiBundle | SessionBundle": ...

    async def close(self) -> "None": ...
