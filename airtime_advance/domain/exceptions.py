"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class SubscriberNotFoundError(DomainException):
    """No profile is registered for the MSISDN"""

    def __init__(self, msisdn: str):
        super().__init__(f"Unknown subscriber {msisdn}")
        self.msisdn = msisdn


class InvalidTopUpError(DomainException):
    """Top-up amount is zero or negative"""

    pass


class InvariantViolationError(DomainException):
    """Stored state contradicts itself, e.g. an offer pointing at a missing model decision"""

    pass
