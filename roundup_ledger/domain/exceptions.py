"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFound(DomainException):
    """Connection, config, donation, cause or organization does not exist"""

    pass


class InvalidState(DomainException):
    """Action attempted against a connection or config that does not permit it"""

    pass


class ValidationFailed(DomainException):
    """Input or destination failed a business rule"""

    pass


class CooldownActive(DomainException):
    """Charity switch attempted before the cooldown elapsed"""

    def __init__(self, days_remaining: int):
        super().__init__(f"Cannot switch charity yet. Wait {days_remaining} more days")
        self.days_remaining = days_remaining


class DuplicateEvent(DomainException):
    """Re-delivery of something already applied; absorbed, never user-facing"""

    pass


class ProcessorError(DomainException):
    """Payment processor rejected the charge or could not be reached"""

    pass


class ChargeOutcomeUnknown(ProcessorError):
    """Charge request timed out without a definitive answer"""

    pass


class AggregatorError(DomainException):
    """Bank data aggregator returned an error or is unavailable"""

    pass


class DirectoryError(DomainException):
    """Cause/organization directory returned an error or is unavailable"""

    pass
