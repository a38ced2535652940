"""Per-resource restriction policy checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from booking_engine.domain.models import Reason, ReasonCode, ReservationRequest, RestrictionPolicy
from booking_engine.repository.data_repository import DataRepository
from booking_engine.utils.config import Settings, get_settings


@dataclass(frozen=True)
class RestrictionCheck:
    ok: bool
    violations: tuple[Reason, ...] = ()


def collect_violations(
    policy: RestrictionPolicy,
    request: ReservationRequest,
) -> list[Reason]:
    """Evaluate every rule; callers get the complete list, not the first failure."""
    violations: list[Reason] = []

    if request.requester_category not in policy.allowed_categories:
        violations.append(
            Reason(
                code=ReasonCode.CATEGORY_NOT_ALLOWED,
                message=(
                    f"Category {request.requester_category} may not reserve "
                    f"{policy.resource_id}"
                ),
            )
        )

    duration = request.duration_minutes
    if duration < policy.min_duration_minutes:
        violations.append(
            Reason(
                code=ReasonCode.DURATION_TOO_SHORT,
                message=(
                    f"Duration {duration:g} min is below the minimum of "
                    f"{policy.min_duration_minutes} min"
                ),
            )
        )
    if duration > policy.max_duration_minutes:
        violations.append(
            Reason(
                code=ReasonCode.DURATION_TOO_LONG,
                message=(
                    f"Duration {duration:g} min exceeds the maximum of "
                    f"{policy.max_duration_minutes} min"
                ),
            )
        )

    # Lead time is measured from submission, not from processing time.
    lead_time = request.start - request.submitted_at
    if lead_time < timedelta(hours=policy.min_advance_notice_hours):
        violations.append(
            Reason(
                code=ReasonCode.INSUFFICIENT_ADVANCE_NOTICE,
                message=(
                    f"At least {policy.min_advance_notice_hours:g}h advance notice "
                    "is required"
                ),
            )
        )
    if policy.max_advance_days is not None and lead_time > timedelta(
        days=policy.max_advance_days
    ):
        violations.append(
            Reason(
                code=ReasonCode.TOO_FAR_IN_ADVANCE,
                message=(
                    f"Reservations open at most {policy.max_advance_days} days ahead"
                ),
            )
        )
    return violations


class RestrictionPolicyService:
    """Looks up the active policy of a resource and checks requests against it."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def policy_for(self, resource_id: str) -> Optional[RestrictionPolicy]:
        return self._repository.get_restriction_policy(resource_id)

    def check_restrictions(
        self,
        resource_id: str,
        request: ReservationRequest,
    ) -> RestrictionCheck:
        policy = self.policy_for(resource_id)
        if policy is None:
            return RestrictionCheck(ok=True)
        violations = collect_violations(policy, request)
        return RestrictionCheck(ok=not violations, violations=tuple(violations))
