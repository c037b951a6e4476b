# errors.py — Domain error kinds for AgileFlow
# Every service raises one of these; main.py maps them to HTTP responses.

from typing import Any, Dict, Optional


class AgileError(Exception):
    """Base class for all domain errors."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.kind.replace("_", " "))
        self.message = message or self.kind.replace("_", " ")
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        # Single line only: drop anything after the first newline
        cause = self.message.splitlines()[0] if self.message else self.kind
        return {"detail": f"{self.kind}: {cause}", "kind": self.kind}


class ValidationFailed(AgileError):
    kind = "validation"
    status_code = 400


class InvalidRank(ValidationFailed):
    kind = "invalid_rank"


class NotFound(AgileError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        msg = f"{entity} not found" if not entity_id else f"{entity} {entity_id} not found"
        super().__init__(msg, entity=entity, entity_id=entity_id)


class Forbidden(AgileError):
    kind = "forbidden"
    status_code = 403


class Conflict(AgileError):
    kind = "conflict"
    status_code = 409


class WIPLimitExceeded(Conflict):
    kind = "wip_limit_exceeded"

    def __init__(self, status: str, limit: int, current: int):
        super().__init__(
            f"column for status '{status}' allows {limit} tasks and already holds {current}",
            status=status, limit=limit, current=current,
        )


class IllegalTransition(AgileError):
    kind = "illegal_transition"
    status_code = 409

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"{entity} cannot move from '{current}' to '{target}'",
            entity=entity, current=current, target=target,
        )


class OrderingError(AgileError):
    """Ordering invariants violated. Clients should trigger a rebalance."""

    hint = "rebalance"

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["hint"] = self.hint
        return out


class RankExhausted(OrderingError):
    kind = "rank_exhausted"


class OrderCorruption(OrderingError):
    kind = "order_corruption"


class UpstreamFailure(AgileError):
    kind = "upstream_failure"
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message, upstream_status=upstream_status)
        self.upstream_status = upstream_status

    @property
    def is_not_found(self) -> bool:
        return self.upstream_status == 404


class CompensationFailed(AgileError):
    kind = "compensation_failed"


class GatewayTimeout(AgileError):
    kind = "timeout"
    status_code = 504


class Cancelled(AgileError):
    kind = "cancelled"
    status_code = 499
