"""
Plan and upgrade-banner API routes.

Surface:
- POST /api/plan/entitlement: Snapshot + status summary for an account
- POST /api/plan/banner: The banner to show right now (or null)
- POST /api/plan/banner/dismissals: Dismiss a banner kind for 24h
- GET  /api/plan/banner/dismissals/{kind}: Whether a kind is dismissed
- POST /api/plan/limit-hits: Report a rejected backend write
- GET  /api/plan/limit-hits: Limit hits still inside the relevance window

Every route is scoped to the account named by the X-User-Id header: dismissals,
limit hits and listeners never leak between accounts.
"""
import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field

from plan_engine.features.entitlements.service import summarize_plan_status
from plan_engine.features.upgrade.service import UpgradeContext
from plan_engine.models.banner import BannerKind, EngagementMetrics
from plan_engine.models.entitlement import AccountRecord, ProjectAggregates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plan", tags=["plan"])


def get_upgrade_context(
    request: Request,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
) -> UpgradeContext:
    return request.app.state.upgrade_contexts.for_account(user_id)


class EntitlementRequest(BaseModel):
    """Account record and project aggregates as the backend returns them."""
    account: AccountRecord = Field(default_factory=AccountRecord)
    projects: ProjectAggregates = Field(default_factory=ProjectAggregates)


class BannerRequest(EntitlementRequest):
    engagement: Optional[EngagementMetrics] = None


class DismissRequest(BaseModel):
    kind: BannerKind


class LimitHitReport(BaseModel):
    """A rejected write as seen by the client: status plus parsed body."""
    model_config = ConfigDict(populate_by_name=True)

    status: int
    body: Optional[Dict[str, Any]] = Field(default=None, alias="data")
    context: str = "api_request"


@router.post("/entitlement")
def entitlement(payload: EntitlementRequest, ctx: UpgradeContext = Depends(get_upgrade_context)):
    snapshot = ctx.compute_entitlement(payload.account, payload.projects)
    summary = summarize_plan_status(snapshot)
    return {
        "snapshot": snapshot.model_dump(mode="json"),
        "status": summary.model_dump(mode="json"),
    }


@router.post("/banner")
def banner(payload: BannerRequest, ctx: UpgradeContext = Depends(get_upgrade_context)):
    snapshot = ctx.compute_entitlement(payload.account, payload.projects)
    decision = ctx.visible_banner(snapshot, payload.engagement)
    return {"banner": decision.model_dump(mode="json") if decision else None}


@router.post("/banner/dismissals")
def dismiss_banner(payload: DismissRequest, ctx: UpgradeContext = Depends(get_upgrade_context)):
    """
    Dismiss a banner kind.

    Errors:
        400: kind is never shown as dismissible
    """
    record = ctx.dismiss(payload.kind)
    return {"dismissal": record.model_dump(mode="json")}


@router.get("/banner/dismissals/{kind}")
def dismissal_status(kind: BannerKind, ctx: UpgradeContext = Depends(get_upgrade_context)):
    return {"kind": kind.value, "dismissed": ctx.is_dismissed(kind)}


@router.post("/limit-hits")
async def report_limit_hit(payload: LimitHitReport, ctx: UpgradeContext = Depends(get_upgrade_context)):
    event = await ctx.bus.classify({"status": payload.status, "data": payload.body}, context=payload.context)
    if event is None:
        logger.debug("limit_hit.not_classified", extra={"status": payload.status, "event_type": payload.context})
    return {"event": event.model_dump(mode="json") if event else None}


@router.get("/limit-hits")
def recent_limit_hits(ctx: UpgradeContext = Depends(get_upgrade_context)):
    return {"events": [hit.model_dump(mode="json") for hit in ctx.recent_limit_hits()]}
