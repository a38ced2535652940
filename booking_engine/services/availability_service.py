"""Provisional admissibility of reservation requests (schedule + restrictions)."""

from __future__ import annotations

from typing import Optional

from booking_engine.domain.constraints import validate_interval
from booking_engine.domain.models import Reason, ReservationRequest, Resource, Verdict
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.priority_table import PriorityTable, UnknownCategoryError
from booking_engine.services.restriction_service import RestrictionPolicyService
from booking_engine.services.schedule_catalog import ScheduleCatalog
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


class RequestValidationError(Exception):
    """Raised when a request is malformed; it never reaches arbitration."""


class MalformedIntervalError(RequestValidationError):
    """Raised when start/end do not form a valid timezone-aware interval."""


class ResourceNotFoundError(RequestValidationError):
    """Raised when the resource id is not present in the catalog."""


class ResourceInactiveError(RequestValidationError):
    """Raised when the resource exists but is not bookable."""


class CategoryNotRegisteredError(RequestValidationError):
    """Raised when the requester category has no priority entry."""


class AvailabilityEvaluator:
    """Stateless combination of ScheduleCatalog and restriction checks.

    The ledger is deliberately absent here: overlap is decided only inside the
    arbiter's critical section.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        schedule_catalog: Optional[ScheduleCatalog] = None,
        restriction_service: Optional[RestrictionPolicyService] = None,
        priority_table: Optional[PriorityTable] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._schedule_catalog = schedule_catalog or ScheduleCatalog(
            repository=self._repository,
            settings=self._settings,
        )
        self._restriction_service = restriction_service or RestrictionPolicyService(
            repository=self._repository,
            settings=self._settings,
        )
        self._priority_table = priority_table or PriorityTable(
            repository=self._repository,
            settings=self._settings,
        )

    def validate(self, request: ReservationRequest) -> Resource:
        """Fail fast on malformed input and return the resolved resource."""
        try:
            validate_interval(request.start, request.end)
        except ValueError as exc:
            raise MalformedIntervalError(str(exc)) from exc
        if request.submitted_at.tzinfo is None:
            raise MalformedIntervalError("submitted_at must be timezone-aware")

        resource = self._repository.get_resource(request.resource_id)
        if resource is None:
            raise ResourceNotFoundError(f"Resource {request.resource_id} does not exist")
        if not resource.active:
            raise ResourceInactiveError(f"Resource {request.resource_id} is not active")
        try:
            self._priority_table.score_for(request.requester_category)
        except UnknownCategoryError as exc:
            raise CategoryNotRegisteredError(str(exc)) from exc
        return resource

    def evaluate(self, request: ReservationRequest) -> Verdict:
        self.validate(request)

        reasons: list[Reason] = []
        schedule_reason = self._schedule_catalog.explain(
            request.resource_id,
            request.start,
            request.end,
        )
        if schedule_reason is not None:
            reasons.append(schedule_reason)

        restriction_check = self._restriction_service.check_restrictions(
            request.resource_id,
            request,
        )
        reasons.extend(restriction_check.violations)

        verdict = Verdict(provisionally_admissible=not reasons, reasons=tuple(reasons))
        logger.debug(
            "Availability evaluated | resource_id=%s | requester_id=%s | admissible=%s | reasons=%s",
            request.resource_id,
            request.requester_id,
            verdict.provisionally_admissible,
            [reason.code.value for reason in verdict.reasons],
        )
        return verdict
