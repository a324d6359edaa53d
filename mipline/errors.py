"""
Exception hierarchy for mipline.

Every error raised by the plot-composition engine derives from MipLineError so
callers can catch the whole family at once. Errors raised by matplotlib itself
are never wrapped.
"""


class MipLineError(Exception):
    """Base exception for plot-composition errors."""

    pass


class ConfigurationError(MipLineError):
    """Raised when the requested combination of plot options is not allowed."""

    pass


class ValidationError(MipLineError):
    """Raised when caller-supplied data or overrides do not match the records."""

    pass


class EmptyInputError(MipLineError):
    """
    Raised when an optional input table carries no usable rows.

    Soft error: the normalizer catches it and degrades to current-only rendering.
    """

    pass
