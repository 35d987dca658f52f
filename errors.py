"""Exception taxonomy for the IVR core.

Input errors are recoverable and drive a retry prompt. Configuration faults
(unknown step, missing template) and unreachable lookups end the call with the
system-error message. Persistence errors are logged and never end the call.
"""


class IvrError(Exception):
    """Base class for every error raised by the IVR core."""


class InputValidationError(IvrError):
    """Caller input did not pass its field validator."""

    def __init__(self, field):
        super().__init__(f"invalid input for {field}")
        self.field = field


class AttemptsExceededError(IvrError):
    """A field reached the attempt cap. Terminal for the session."""

    def __init__(self, field, attempts):
        super().__init__(f"{field} failed {attempts} times")
        self.field = field
        self.attempts = attempts


class IdentityNotFoundError(IvrError):
    """No enrolled record matched the collected identity trio."""


class UnknownStepError(IvrError):
    """A step is missing from the configured step table."""

    def __init__(self, step):
        super().__init__(f"unknown step: {step!r}")
        self.step = step


class MissingTemplateError(IvrError):
    """A message key is missing for a locale."""

    def __init__(self, locale, key):
        super().__init__(f"no template {key!r} for locale {locale!r}")
        self.locale = locale
        self.key = key


class PersistenceError(IvrError):
    """Writing to the identity store failed."""


class ExternalLookupError(IvrError):
    """The identity store or the question classifier could not be reached."""
