"""
Segment endpoints.

Snapshots are populated eagerly on create and on every rules update, and
lazily on list once stale. Rule payloads accept the ``last_active_days``
alias; ``?strict=true`` rejects rule nodes the evaluator cannot read.
"""

from fastapi import APIRouter, status, Query
from typing import Optional
import logging

from crm_api.api.deps import DbSession, CurrentUser
from crm_api.config import settings
from crm_api.exceptions import ValidationError, ErrorCode
from crm_api.models.segment import Segment
from crm_api.schemas.segment import (
    SegmentCreate,
    SegmentUpdate,
    SegmentResponse,
    SegmentPreviewRequest,
    SegmentPreviewResponse,
    SegmentCustomersResponse,
)
from crm_api.services.segment_population import SegmentPopulationService
from crm_api.services.segment_rules import UnrecognizedRuleError, normalize_rules, validate_rules

logger = logging.getLogger(__name__)

router = APIRouter()

StrictQuery = Query(None, description="Reject rule nodes the evaluator cannot interpret")


def _effective_strict(strict: Optional[bool]) -> bool:
    return settings.SEGMENT_RULES_STRICT if strict is None else strict


def _prepare_rules(rules: dict, strict: bool) -> dict:
    rules = normalize_rules(rules)
    if strict:
        try:
            validate_rules(rules)
        except UnrecognizedRuleError as e:
            raise ValidationError(str(e), code=ErrorCode.INVALID_RULES)
    return rules


def _to_response(segment: Segment, warning: Optional[str] = None) -> SegmentResponse:
    response = SegmentResponse.model_validate(segment)
    response.warning = warning
    return response


@router.get("/", response_model=list[SegmentResponse])
async def list_segments(db: DbSession, current_user: CurrentUser):
    """List segments, refreshing stale snapshots first."""
    population = SegmentPopulationService(db)
    segments = await population.refresh_all(current_user.id)
    return [_to_response(s) for s in segments]


@router.post("/", response_model=SegmentResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(
    segment_data: SegmentCreate,
    db: DbSession,
    current_user: CurrentUser,
    strict: Optional[bool] = StrictQuery,
):
    """Create a segment and populate its snapshot."""
    strict = _effective_strict(strict)
    rules = _prepare_rules(segment_data.rules, strict)

    segment = Segment(
        user_id=current_user.id,
        name=segment_data.name,
        rules_json=rules,
        created_by=current_user.email,
        customer_ids=[],
        customer_count=0,
    )
    db.add(segment)
    await db.commit()
    await db.refresh(segment)

    warning = None
    try:
        await SegmentPopulationService(db, strict=strict).populate(segment)
    except Exception as e:
        await db.rollback()
        await db.refresh(segment)
        warning = f"Segment saved but population failed: {e}"
        logger.warning(f"Segment {segment.id} population failed: {e}")

    return _to_response(segment, warning)


@router.post("/preview", response_model=SegmentPreviewResponse)
async def preview_segment(
    payload: SegmentPreviewRequest,
    db: DbSession,
    current_user: CurrentUser,
    strict: Optional[bool] = StrictQuery,
):
    """Count matching customers for unsaved rules."""
    strict = _effective_strict(strict)
    rules = _prepare_rules(payload.rules, strict)
    try:
        return await SegmentPopulationService(db, strict=strict).preview(current_user.id, rules)
    except UnrecognizedRuleError as e:
        raise ValidationError(str(e), code=ErrorCode.INVALID_RULES)


@router.get("/{segment_id}", response_model=SegmentResponse)
async def get_segment(segment_id: int, db: DbSession, current_user: CurrentUser):
    segment = await SegmentPopulationService(db).get_segment(segment_id, current_user.id)
    return _to_response(segment)


@router.patch("/{segment_id}", response_model=SegmentResponse)
async def update_segment(
    segment_id: int,
    segment_data: SegmentUpdate,
    db: DbSession,
    current_user: CurrentUser,
    strict: Optional[bool] = StrictQuery,
):
    """Update name and/or rules. Supplying rules always repopulates the snapshot."""
    strict = _effective_strict(strict)
    population = SegmentPopulationService(db, strict=strict)
    segment = await population.get_segment(segment_id, current_user.id)

    update_data = segment_data.model_dump(exclude_unset=True)
    if update_data.get("name") is not None:
        segment.name = update_data["name"]
    rules_supplied = update_data.get("rules") is not None
    if rules_supplied:
        segment.rules_json = _prepare_rules(update_data["rules"], strict)
    await db.commit()

    warning = None
    if rules_supplied:
        try:
            await population.populate(segment)
        except Exception as e:
            await db.rollback()
            await db.refresh(segment)
            warning = f"Segment updated but population failed, showing previous results: {e}"
            logger.warning(f"Segment {segment_id} repopulation failed: {e}")

    return _to_response(segment, warning)


@router.delete("/{segment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_segment(segment_id: int, db: DbSession, current_user: CurrentUser):
    segment = await SegmentPopulationService(db).get_segment(segment_id, current_user.id)
    await db.delete(segment)
    await db.commit()


@router.post("/{segment_id}/refresh", response_model=SegmentResponse)
async def refresh_segment(
    segment_id: int,
    db: DbSession,
    current_user: CurrentUser,
    strict: Optional[bool] = StrictQuery,
):
    """Recompute the snapshot now, regardless of its age."""
    population = SegmentPopulationService(db, strict=_effective_strict(strict))
    segment = await population.get_segment(segment_id, current_user.id)
    try:
        await population.populate(segment)
    except UnrecognizedRuleError as e:
        raise ValidationError(str(e), code=ErrorCode.INVALID_RULES)
    return _to_response(segment)


@router.get("/{segment_id}/customers", response_model=SegmentCustomersResponse)
async def get_segment_customers(
    segment_id: int,
    db: DbSession,
    current_user: CurrentUser,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Page through the customers in a segment's snapshot."""
    customers, total = await SegmentPopulationService(db).get_customers(
        segment_id, current_user.id, limit=limit, offset=offset
    )
    return SegmentCustomersResponse(
        segment_id=segment_id,
        items=customers,
        total=total,
        limit=limit,
        offset=offset,
        has_more=limit is not None and offset + limit < total,
    )
