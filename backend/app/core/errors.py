class RoyaltyError(Exception):
    """Base class for every error raised by the distribution engine."""


class ConfigurationError(RoyaltyError):
    """Royalty configuration for an artwork is missing or invalid."""


class ValidationError(RoyaltyError):
    """Sale amount or share percentages violate the split constraints."""


class TransientError(RoyaltyError):
    """Retryable transfer failure (timeout, rate limit, gateway hiccup)."""


class PermanentError(RoyaltyError):
    """Non-retryable transfer failure (invalid destination, insufficient funds)."""


class ResourceBusyError(RoyaltyError):
    """Another dispatch holds the plan lease."""


class PlanNotFoundError(RoyaltyError):
    pass
