"""
FastAPI adapter exposing the deduplication and reconciliation operations.

The tenant and acting user come from the X-Tenant-Id / X-Actor-Id headers;
authenticating them is left to the surrounding deployment.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from .errors import MatchingError
from .models import (
    DuplicateStatus,
    FindingFilters,
    ItemFilters,
    MatchStatus,
    Page,
    PageRequest,
    ReconciliationStatus,
    ReconciliationTolerance,
    ReconciliationType,
    RecordType,
    ReportFilters,
    ResolutionAction,
    ScanOptions,
    ScanScope,
    display_label,
    utcnow,
)
from .services import DeduplicationService, ReconciliationService

logger = structlog.get_logger()


# Request models
class ResolveFindingRequest(BaseModel):
    status: DuplicateStatus
    notes: Optional[str] = None


class MergeRequest(BaseModel):
    keep_record_id: str
    merge_record_id: str
    field_overrides: Optional[Dict[str, Any]] = None


class ScanRequest(BaseModel):
    record_type: RecordType
    scope: ScanScope = ScanScope.ALL
    min_score: Optional[float] = Field(default=None, ge=0, le=1)
    fields: Optional[List[str]] = None
    dry_run: bool = False


class CheckDuplicateRequest(BaseModel):
    record_type: RecordType
    fields: Dict[str, Any]


class ToleranceModel(BaseModel):
    amount_tolerance_cents: int = Field(default=100, ge=0)
    percentage_tolerance: float = Field(default=0.01, ge=0)
    date_tolerance_days: int = Field(default=1, ge=0)


class RunReconciliationRequest(BaseModel):
    source_system: str = Field(min_length=1)
    destination_system: str = Field(min_length=1)
    reconciliation_type: ReconciliationType
    reconciliation_date: date
    tolerance: Optional[ToleranceModel] = None


class ResolveItemRequest(BaseModel):
    action: ResolutionAction
    notes: Optional[str] = None


class BulkResolveRequest(BaseModel):
    item_ids: List[str] = Field(min_length=1)
    action: ResolutionAction
    notes: Optional[str] = None


class RequestContext(BaseModel):
    tenant_id: str
    actor: str


def request_context(
    x_tenant_id: str = Header(..., min_length=1),
    x_actor_id: str = Header(default="system"),
) -> RequestContext:
    return RequestContext(tenant_id=x_tenant_id, actor=x_actor_id)


def page_request(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
) -> PageRequest:
    return PageRequest(page=page, limit=limit)


def page_response(page: Page, serialize=None) -> Dict[str, Any]:
    items = [serialize(item) for item in page.items] if serialize else page.items
    return {
        "items": items,
        "page": page.page,
        "limit": page.limit,
        "total": page.total,
        "total_pages": page.total_pages,
    }


def create_app(
    dedup_service: DeduplicationService,
    recon_service: ReconciliationService,
) -> FastAPI:
    """Build the HTTP app around already-wired services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting record matching API")
        yield
        await dedup_service.notifications.drain()
        await recon_service.notifications.drain()
        logger.info("Shutting down record matching API")

    app = FastAPI(
        title="Record Matching & Reconciliation",
        description="Duplicate detection and cross-system reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(MatchingError)
    async def matching_error_handler(request: Request, exc: MatchingError):
        if exc.status_code >= 500:
            logger.error("Request failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder({"error": exc.to_dict()}),
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": utcnow().isoformat()}

    # ============================================
    # Deduplication
    # ============================================

    @app.get("/api/findings")
    async def list_findings(
        status: Optional[DuplicateStatus] = None,
        record_type: Optional[RecordType] = None,
        min_score: Optional[float] = Query(default=None, ge=0, le=1),
        max_score: Optional[float] = Query(default=None, ge=0, le=1),
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: PageRequest = Depends(page_request),
        ctx: RequestContext = Depends(request_context),
    ):
        filters = FindingFilters(
            status=status,
            record_type=record_type,
            min_match_score=min_score,
            max_match_score=max_score,
            start_date=start_date,
            end_date=end_date,
        )
        result = await dedup_service.list_findings(ctx.tenant_id, filters, page)
        return page_response(result, lambda f: f.to_dict())

    @app.get("/api/findings/{finding_id}")
    async def get_finding(finding_id: str, ctx: RequestContext = Depends(request_context)):
        detail = await dedup_service.get_finding(ctx.tenant_id, finding_id)
        return {
            "finding": detail.finding.to_dict(),
            "status_label": display_label(detail.finding.status),
            "original_record": detail.original_record,
            "duplicate_record": detail.duplicate_record,
        }

    @app.post("/api/findings/{finding_id}/resolve")
    async def resolve_finding(
        finding_id: str,
        body: ResolveFindingRequest,
        ctx: RequestContext = Depends(request_context),
    ):
        finding = await dedup_service.resolve_finding(
            finding_id, ctx.tenant_id, body.status, body.notes, ctx.actor
        )
        return finding.to_dict()

    @app.post("/api/findings/{finding_id}/merge")
    async def merge_finding(
        finding_id: str,
        body: MergeRequest,
        ctx: RequestContext = Depends(request_context),
    ):
        return await dedup_service.merge_finding_records(
            finding_id,
            ctx.tenant_id,
            body.keep_record_id,
            body.merge_record_id,
            ctx.actor,
            field_overrides=body.field_overrides,
        )

    @app.post("/api/scans")
    async def scan(body: ScanRequest, ctx: RequestContext = Depends(request_context)):
        options = ScanOptions(
            scope=body.scope,
            min_score=body.min_score,
            fields=body.fields,
            dry_run=body.dry_run,
        )
        return await dedup_service.scan(
            ctx.tenant_id, body.record_type, body.scope, options, ctx.actor
        )

    @app.post("/api/duplicates/check")
    async def check_duplicate(
        body: CheckDuplicateRequest,
        ctx: RequestContext = Depends(request_context),
    ):
        return await dedup_service.check_duplicate(ctx.tenant_id, body.record_type, body.fields)

    @app.get("/api/duplicates/stats")
    async def duplicate_stats(ctx: RequestContext = Depends(request_context)):
        stats = await dedup_service.get_stats(ctx.tenant_id)
        return {**jsonable_encoder(stats), "pending_review": stats.pending_review}

    # ============================================
    # Reconciliation
    # ============================================

    @app.post("/api/reconciliations")
    async def run_reconciliation(
        body: RunReconciliationRequest,
        ctx: RequestContext = Depends(request_context),
    ):
        tolerance = (
            ReconciliationTolerance(**body.tolerance.model_dump()) if body.tolerance else None
        )
        return await recon_service.run_reconciliation(
            ctx.tenant_id,
            body.source_system,
            body.destination_system,
            body.reconciliation_type,
            body.reconciliation_date,
            tolerance=tolerance,
            actor=ctx.actor,
        )

    @app.get("/api/reconciliations")
    async def list_reports(
        status: Optional[ReconciliationStatus] = None,
        source_system: Optional[str] = None,
        destination_system: Optional[str] = None,
        reconciliation_type: Optional[ReconciliationType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: PageRequest = Depends(page_request),
        ctx: RequestContext = Depends(request_context),
    ):
        filters = ReportFilters(
            status=status,
            source_system=source_system,
            destination_system=destination_system,
            reconciliation_type=reconciliation_type,
            start_date=start_date,
            end_date=end_date,
        )
        result = await recon_service.list_reports(ctx.tenant_id, filters, page)
        return page_response(result, lambda r: r.to_dict())

    @app.get("/api/reconciliations/{report_id}")
    async def get_report(report_id: str, ctx: RequestContext = Depends(request_context)):
        report = await recon_service.get_report(ctx.tenant_id, report_id)
        return {
            **report.to_dict(),
            "status_label": display_label(report.status),
            "match_rate": round(report.match_rate, 2),
        }

    @app.get("/api/reconciliations/{report_id}/items")
    async def list_items(
        report_id: str,
        match_status: Optional[MatchStatus] = None,
        has_discrepancy: Optional[bool] = None,
        resolved: Optional[bool] = None,
        page: PageRequest = Depends(page_request),
        ctx: RequestContext = Depends(request_context),
    ):
        filters = ItemFilters(
            match_status=match_status,
            has_discrepancy=has_discrepancy,
            resolved=resolved,
        )
        result = await recon_service.list_items(ctx.tenant_id, report_id, filters, page)
        return page_response(result, lambda i: i.to_dict())

    @app.post("/api/reconciliation-items/bulk-resolve")
    async def bulk_resolve(body: BulkResolveRequest, ctx: RequestContext = Depends(request_context)):
        return await recon_service.bulk_resolve(
            ctx.tenant_id, body.item_ids, body.action, body.notes, ctx.actor
        )

    @app.post("/api/reconciliation-items/{item_id}/resolve")
    async def resolve_item(
        item_id: str,
        body: ResolveItemRequest,
        ctx: RequestContext = Depends(request_context),
    ):
        item = await recon_service.resolve_reconciliation_item(
            item_id, ctx.tenant_id, body.action, body.notes, ctx.actor
        )
        return item.to_dict()

    @app.get("/api/dashboard")
    async def dashboard(ctx: RequestContext = Depends(request_context)):
        result = await recon_service.get_dashboard(ctx.tenant_id)
        return {
            **jsonable_encoder(result),
            "recent_reports": [r.to_dict() for r in result.recent_reports],
        }

    return app
