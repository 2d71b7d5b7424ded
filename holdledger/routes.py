import uuid
from typing import Literal, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from holdledger.auth import verify_token
from holdledger.errors import GatewayError

router = APIRouter()


class JobCompletionRequest(BaseModel):
    status: Literal["success", "failed"]


class CheckoutRequest(BaseModel):
    job_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


def new_job_id() -> str:
    return f"job-{uuid.uuid4().hex}"


@router.post("/jobs/{job_id}/complete")
def complete_job(
    job_id: str,
    body: JobCompletionRequest,
    request: Request,
    auth=Depends(verify_token)
):
    coordinator = request.app.state.coordinator

    try:
        record = coordinator.on_job_outcome(job_id, body.status == "success")
    except GatewayError as exc:
        record = coordinator.ledger.get(job_id)
        raise HTTPException(
            status_code=502,
            detail={"error": str(exc), "job_id": job_id, "payment_status": record.status.value}
        )

    return {"ok": True, "job_id": job_id, "payment_status": record.status.value}


@router.post("/checkout-sessions")
def create_checkout_session_api(
    body: CheckoutRequest,
    request: Request,
    auth=Depends(verify_token)
):
    settings = request.app.state.settings
    job_id = body.job_id or new_job_id()
    base = settings.public_base_url.rstrip("/")

    try:
        session = request.app.state.gateway.create_checkout_session(
            job_id,
            success_url=body.success_url or f"{base}/success.html?jobId={job_id}",
            cancel_url=body.cancel_url or f"{base}/cancel.html?jobId={job_id}",
        )
    except stripe.StripeError as exc:
        raise HTTPException(status_code=502, detail={"error": str(exc), "job_id": job_id})

    return {"url": session.url, "job_id": job_id, "session_id": session.id}


@router.get("/payments/{job_id}")
def get_payment(job_id: str, request: Request, auth=Depends(verify_token)):
    record = request.app.state.ledger.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown job")
    return record.model_dump(mode="json")


@router.post("/sweeps")
def run_sweep(request: Request, auth=Depends(verify_token)):
    report = request.app.state.sweeper.run_once()
    return report.model_dump()
