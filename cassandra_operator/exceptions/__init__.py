"""
Custom exceptions for the Cassandra operator.

Errors are split into two families that drive the reconcile verdict:

- TransientError: a collaborator (a node's Jolokia agent, the Kubernetes API)
  failed in a way that is expected to heal. The pass is requeued after a
  short delay and no state is advanced.
- InvariantViolation: the operator itself broke one of its own rules (for
  example it tried to talk to a node that is not the highest ordinal of its
  rack). Never retried silently; surfaced as a failed pass.
"""
from typing import Any, Dict, Optional


class OperatorException(Exception):
    """
    Base exception for all operator errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class TransientError(OperatorException):
    """
    Raised when a collaborator fails in a retryable way.

    The reconciler requeues the cluster after ``retry_after`` seconds
    (or the configured default when None).
    """

    retryable = True

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message=message, details=details)
        self.retry_after = retry_after


class ManagementInterfaceError(TransientError):
    """
    Raised when a node's Jolokia side-channel cannot be used.

    Covers timeouts, refused connections, non-2xx responses, Jolokia
    error payloads and unknown attribute values. Always attributable to
    exactly one node.
    """

    def __init__(
        self,
        node: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
        request_delivered: bool = False,
    ):
        self.node = node
        self.reason = reason
        # True when the node received the request but did not answer in time
        self.request_delivered = request_delivered
        super().__init__(
            message=f"Management interface error on {node}: {reason}",
            details=details or {"node": node, "reason": reason},
        )


class KubernetesError(TransientError):
    """
    Raised when Kubernetes API operations fail.

    Used for K8s API errors, connection issues, patch conflicts, etc.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status = status
        super().__init__(
            message=f"Kubernetes error: {message}",
            details=details or ({"status": status} if status is not None else None),
        )


class InvariantViolation(OperatorException):
    """
    Raised when the decommission targeting rules are broken.

    Signals a logic defect, not an environmental failure, so it is never
    retried as if it were transient.
    """

    retryable = False

    def __init__(self, rack: str, ordinal: Optional[int], reason: str):
        self.rack = rack
        self.ordinal = ordinal
        self.reason = reason
        super().__init__(
            message=f"Invariant violation on rack {rack} (ordinal {ordinal}): {reason}",
            details={"rack": rack, "ordinal": ordinal, "reason": reason},
        )


class ClusterNotFoundError(OperatorException):
    """Raised when the CassandraCluster resource no longer exists."""

    def __init__(self, namespace: str, name: str):
        super().__init__(
            message=f"CassandraCluster '{namespace}/{name}' not found",
            details={"namespace": namespace, "name": name},
        )


class ConfigurationError(OperatorException):
    """
    Raised when the declared cluster spec cannot be acted upon.

    Not retried until the resource changes or the resync interval elapses.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=f"Invalid cluster spec: {message}", details=details)
