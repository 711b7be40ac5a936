"""
Pipeline Error Taxonomy

Every error raised by the price pipeline derives from PipelineError so callers
can catch the whole family at once, while the concrete classes tell them what
went wrong and whether retrying makes sense.

ERROR FAMILIES:
- Per-record errors (DecodeError, HandlerError): reported through the
  consumer's error channel, never abort a batch or the poll loop
- Caller errors (InvalidPartitionError, AlreadySubscribedError,
  ClientStateError): surfaced immediately, never retried
- Transport errors (DeliveryError, BrokerConnectionError): the transport is
  broken for this client, the owner decides whether to restart

STRUCTURED CONTEXT:
Each error carries topic / partition / offset when known. to_dict() returns
a flat dictionary suitable for the logger's extra={} payload.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class for all price pipeline errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.topic = topic
        self.partition = partition
        self.offset = offset
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Error context for structured logging."""
        result: Dict[str, Any] = {
            "error": self.message,
            "error_type": self.__class__.__name__,
            "retryable": self.retryable,
        }
        if self.topic is not None:
            result["topic"] = self.topic
        if self.partition is not None:
            result["partition"] = self.partition
        if self.offset is not None:
            result["offset"] = self.offset
        if self.cause is not None:
            result["cause"] = str(self.cause)
            result["cause_type"] = self.cause.__class__.__name__
        return result


# ==============================================================================
# PER-RECORD ERRORS
# ==============================================================================


class DecodeError(PipelineError, ValueError):
    """Payload bytes are not valid codec output."""


class HandlerError(PipelineError):
    """A subscriber's handler failed while processing one record."""


# ==============================================================================
# CALLER ERRORS
# ==============================================================================


class InvalidPartitionError(PipelineError, ValueError):
    """Partition outside [0, partition_count) or a non-positive partition count."""


class AlreadySubscribedError(PipelineError, RuntimeError):
    """subscribe() called on a client that already has a subscription."""


class ClientStateError(PipelineError, RuntimeError):
    """Operation not allowed in the client's current lifecycle state."""


# ==============================================================================
# TRANSPORT ERRORS
# ==============================================================================


class TransientBrokerError(PipelineError):
    """
    Retriable transport failure reported by a producer transport.

    Examples: network error, leader not available, request timeout,
    local queue full.
    """

    retryable = True


class BrokerRejectedError(PipelineError):
    """Non-retriable failure: the broker refused the record."""


class DeliveryError(PipelineError):
    """
    A send could not be delivered.

    Raised after the producer exhausted its retries on transient failures,
    or immediately when the broker rejected the record outright, the
    connection was gone, or the producer was closed between attempts. The last
    underlying error is available as `cause` (and `__cause__`).
    """

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result


class BrokerConnectionError(PipelineError, ConnectionError):
    """Broker unreachable or the transport failed fatally. The client is closed."""
