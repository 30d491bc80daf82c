"""Error taxonomy shared across the package.

Everything raised across a public boundary is one of these kinds. Compliance
problems are not here: they are repaired in place and only logged.
"""


class SleepStepsError(Exception):
    """Base class for sleepsteps errors."""


class GenerationError(SleepStepsError, ValueError):
    """Malformed input to a generator (bad profile, inverted range, unknown mode)."""


class DeliveryError(SleepStepsError):
    """A health store write, query or delete failed.

    Delivery errors are retried by the executor and recorded as failed
    units once the retry budget is spent.
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class AuthorizationError(SleepStepsError):
    """The health store refused access. Never retried."""
