"""Error taxonomy shared by every AURA component.

Read paths return empty results for missing optional data; these errors are
reserved for writes, unknown ids and setup/ordering mistakes.
"""


class AuraError(Exception):
    """Base class for all AURA errors."""


class NotInitializedError(AuraError):
    """Operation invoked before the component (or user session) was set up."""


class NotFoundError(AuraError):
    """Unknown device, automation or rule id."""


class ValidationError(AuraError):
    """Malformed trigger, action or record definition."""


class UpstreamTimeoutError(AuraError):
    """A storage or provider call exceeded its deadline."""


class PersistenceError(AuraError):
    """A durable write (or read) failed."""
