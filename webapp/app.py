"""HTTP API for email-addressed escrow transfers."""

import hmac
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from core.domain.entities import utcnow
from core.domain.exceptions import HTTP_STATUS_BY_KIND, AuthenticationError, PendingTransferError, ValidationError
from core.domain.schemas import CreatePendingTransferRequest
from infrastructure.scheduler.job_scheduler import EXPIRE_TRANSFERS, SEND_REMINDERS, PendingTransferScheduler
from infrastructure.services.app_context import AppContext


# --- Models ---

class PatchTransferRequest(BaseModel):
    """Body of PATCH /api/pending-transfers."""
    action: str
    transfer_id: Optional[str] = Field(default=None, alias="transferId")
    claimant_user_id: Optional[str] = Field(default=None, alias="claimantUserId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    email: Optional[str] = None
    sender_user_id: Optional[str] = Field(default=None, alias="senderUserId")

    model_config = {"populate_by_name": True}


def _error_response(error: PendingTransferError) -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_STATUS_BY_KIND.get(error.kind, 500),
        content={
            "success": False,
            "error": error.kind,
            "message": error.message,
            "status": error.status.value if error.status else None,
            "transferId": error.transfer_id,
        },
    )


def _check_bearer(authorization: str, expected: Optional[str]) -> None:
    if not expected:
        raise AuthenticationError("Server authentication is not configured")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        raise AuthenticationError("Invalid or missing bearer token")


def create_app(app_context: Optional[AppContext] = None,
               scheduler: Optional[PendingTransferScheduler] = None) -> FastAPI:
    """Build the API. Without an explicit context one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_context = app.state.app_context is None
        if owns_context:
            from infrastructure.services.app_context import build_app_context
            from other.config_reader import config
            app.state.app_context = build_app_context(config)
            await app.state.app_context.startup()
        logger.info("WebApp started")
        yield
        if owns_context:
            await app.state.app_context.close()
        logger.info("WebApp stopped")

    app = FastAPI(title="Pending Transfers API", lifespan=lifespan)
    app.state.app_context = app_context
    app.state.scheduler = scheduler

    @app.exception_handler(PendingTransferError)
    async def pending_transfer_error_handler(request: Request, exc: PendingTransferError):
        if HTTP_STATUS_BY_KIND.get(exc.kind, 500) >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        return _error_response(ValidationError(f"Invalid request: {exc.errors()}"))

    def context() -> AppContext:
        return app.state.app_context

    def require_api_key(authorization: str = Header(default=""), ctx: AppContext = Depends(context)):
        _check_bearer(authorization, ctx.api_key)

    def require_cron_secret(authorization: str = Header(default=""), ctx: AppContext = Depends(context)):
        _check_bearer(authorization, ctx.cron_secret)

    # --- API Endpoints ---

    @app.get("/api/pending-transfers", dependencies=[Depends(require_api_key)])
    async def get_pending_transfers(
        recipient_email: Optional[str] = Query(default=None, alias="recipientEmail"),
        sender_user_id: Optional[str] = Query(default=None, alias="senderUserId"),
        transfer_id: Optional[str] = Query(default=None, alias="transferId"),
        ctx: AppContext = Depends(context),
    ):
        if transfer_id:
            transfer = await ctx.service.get_transfer_details(transfer_id)
            if transfer is None:
                return JSONResponse(status_code=404, content={
                    "success": False, "error": "not_found", "message": "Transfer not found",
                    "status": None, "transferId": transfer_id,
                })
            return {"success": True, "transfer": transfer.to_dict()}
        if recipient_email:
            transfers = await ctx.service.get_pending_transfers(recipient_email)
        elif sender_user_id:
            transfers = await ctx.service.get_sent_pending_transfers(sender_user_id)
        else:
            raise ValidationError("One of recipientEmail, senderUserId or transferId is required")
        return {"success": True, "transfers": [t.to_dict() for t in transfers]}

    @app.post("/api/pending-transfers", status_code=201, dependencies=[Depends(require_api_key)])
    async def create_pending_transfer(request: CreatePendingTransferRequest, ctx: AppContext = Depends(context)):
        transfer = await ctx.service.create_pending_transfer(request)
        return {"success": True, "transfer": transfer.to_dict()}

    @app.patch("/api/pending-transfers", dependencies=[Depends(require_api_key)])
    async def update_pending_transfer(request: PatchTransferRequest, ctx: AppContext = Depends(context)):
        service = ctx.service
        if request.action == "claim":
            # `userId` is accepted for older callers
            claimant_user_id = request.claimant_user_id or request.user_id
            if not request.transfer_id or not claimant_user_id:
                raise ValidationError("transferId and claimantUserId are required")
            tx_hash = await service.claim_pending_transfer(request.transfer_id, claimant_user_id)
            return {"success": True, "claimTransactionHash": tx_hash}
        if request.action == "cancel":
            sender_user_id = request.sender_user_id or request.user_id
            if not request.transfer_id or not sender_user_id:
                raise ValidationError("transferId and senderUserId are required")
            tx_hash = await service.cancel_pending_transfer(request.transfer_id, sender_user_id)
            return {"success": True, "refundTransactionHash": tx_hash}
        if request.action == "auto-claim":
            if not request.user_id or not request.email:
                raise ValidationError("userId and email are required")
            claimed = await service.auto_claim_for_new_user(request.user_id, request.email)
            return {"success": True, "claimedCount": claimed}
        if request.action == "sync":
            if request.transfer_id:
                transfer = await service.sync_transfer_status(request.transfer_id)
                return {"success": True, "transfer": transfer.to_dict()}
            if request.sender_user_id:
                synced = await service.sync_all_for_sender(request.sender_user_id)
                return {"success": True, "synced": synced}
            raise ValidationError("transferId or senderUserId is required")
        raise ValidationError(f"Unknown action {request.action}")

    @app.post("/api/cron/process-expiry", dependencies=[Depends(require_cron_secret)])
    async def process_expiry(ctx: AppContext = Depends(context)):
        if app.state.scheduler is not None:
            processed = await app.state.scheduler.run_now(EXPIRE_TRANSFERS)
        else:
            processed = await ctx.service.expire_pending_transfers()
        return {"success": True, "processed": processed, "timestamp": utcnow().isoformat()}

    @app.post("/api/cron/send-reminders", dependencies=[Depends(require_cron_secret)])
    async def send_reminders(ctx: AppContext = Depends(context)):
        if app.state.scheduler is not None:
            sent = await app.state.scheduler.run_now(SEND_REMINDERS)
        else:
            sent = await ctx.service.send_expiry_reminders()
        return {"success": True, "sent": sent, "timestamp": utcnow().isoformat()}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "timestamp": utcnow().isoformat()}

    return app
