"""Exceptions raised by the loop closure pipeline.

Verification rejections and "no loop closure" outcomes are ordinary
return values, not exceptions. Only failures that make a session
unusable are raised.
"""


class ConfigurationError(ValueError):
    """Invalid parameters or an unusable working directory."""


class StoreInconsistencyError(LookupError):
    """A persisted observation record is missing or unreadable."""
