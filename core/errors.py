"""
Error taxonomy for the radar intake flow.

None of these are fatal: each one sends the flow back to an earlier state
from which the user can retry.
"""

from __future__ import annotations


class RadarFlowError(Exception):
    """Base class for recoverable intake errors."""


class InterpretationFailed(RadarFlowError):
    """The interpretation stream errored or produced malformed data."""


class InterpretationCancelled(RadarFlowError):
    """The interpretation call was cancelled before it completed.

    Never shown to the user.
    """


class CreationFailed(RadarFlowError):
    """The storage service rejected or failed the creation call.

    Args:
        message: The upstream error message.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
