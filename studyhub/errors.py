# studyhub/errors.py


class StudyHubError(Exception):
    """Base class for errors surfaced to the caller of a service operation."""
    pass


class ValidationError(StudyHubError):
    """Caller supplied data that fails a structural constraint."""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.field = field


class InvalidStateError(StudyHubError):
    """Requested transition is illegal for the current lifecycle state."""
    pass


class CooldownError(InvalidStateError):
    """Transition is legal but was requested again too soon."""

    def __init__(self, message, retry_after=None):
        super().__init__(message)
        self.retry_after = retry_after


class RecruitingCooldownError(CooldownError):
    pass


class EmailResendCooldownError(CooldownError):
    pass


class NotFoundError(StudyHubError):
    """Referenced study, event, enrollment, account, tag or zone does not exist."""
    pass


class PermissionDeniedError(StudyHubError):
    """Acting account is not allowed to manage the target."""
    pass


class DispatchFailure(Exception):
    """A single notification could not be delivered. Never reaches the mutating caller."""

    def __init__(self, recipient, reason):
        super().__init__(f"Delivery to {recipient} failed: {reason}")
        self.recipient = recipient
        self.reason = reason
