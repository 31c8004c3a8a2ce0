from typing import Optional


class RailwayDemandError(Exception):
    """Base class for errors raised by the demand pipeline."""


class TransportError(RailwayDemandError):
    """Network, HTTP or payload failure while fetching one partition."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MalformedPayloadError(TransportError):
    """Upstream answered, but not with a usable list of rows."""


class FetchCancelledError(RailwayDemandError):
    """Cancellation was observed while fetching."""


class ParseError(RailwayDemandError, ValueError):
    """A date or number in a row could not be parsed."""


class AggregationInputError(RailwayDemandError, ValueError):
    """Unknown reducer or invalid reducer options."""


class FetchInProgressError(RailwayDemandError):
    """A batch is already running on this service."""


class UnknownReducerError(AggregationInputError):
    """No reducer is registered under the requested name."""
