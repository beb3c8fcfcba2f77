"""
============================================================================
Evaluation Desk v1.0.0
Registration API - Customer Portal Endpoints
============================================================================

Reliability Level: L6 Critical
Input Constraints: Bearer API key (except check-client)
Side Effects: process creates a client and completes its payment

ENDPOINTS:
    GET  /registration/validate-payment?paymentId=
    POST /registration/process
    GET  /registration/check-client?email=&document=
    GET  /client-evaluations?email=&cpf=

============================================================================
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_registration_service
from app.api.errors import DOMAIN_ERRORS, domain_error_response
from app.auth.security import require_api_key
from app.schemas.client import (
    ClientIdentityOut,
    ClientOut,
    PaymentDataOut,
    RegistrationRequest,
)
from services.registration_service import RegistrationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/registration/validate-payment", dependencies=[Depends(require_api_key)])
async def validate_payment(
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    service: RegistrationService = Depends(get_registration_service)
):
    """Tell the portal whether a payment can still be registered."""
    try:
        payment = service.validate_payment(payment_id)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)

    data = PaymentDataOut(
        id=payment.payment_id,
        platform=payment.platform,
        plan=payment.plan,
        customer_email=payment.customer_email,
        customer_name=payment.customer_name,
        customer_document=payment.customer_document,
    )
    return {"valid": True, "paymentData": data.to_json()}


@router.post("/registration/process", dependencies=[Depends(require_api_key)])
async def process_registration(
    request: RegistrationRequest,
    service: RegistrationService = Depends(get_registration_service)
):
    try:
        client = service.process_registration(request)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)

    return {"message": "Registro processado com sucesso", "evaluationId": client.id}


@router.get("/registration/check-client")
async def check_client(
    email: Optional[str] = Query(None),
    document: Optional[str] = Query(None),
    service: RegistrationService = Depends(get_registration_service)
):
    try:
        client = service.check_client(email=email, document=document)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)

    if client is None:
        return {"exists": False}
    return {
        "exists": True,
        "clientData": ClientIdentityOut.model_validate(client).to_json(),
    }


@router.get("/client-evaluations", dependencies=[Depends(require_api_key)])
async def client_evaluations(
    email: Optional[str] = Query(None),
    cpf: Optional[str] = Query(None),
    service: RegistrationService = Depends(get_registration_service)
):
    try:
        clients = service.client_evaluations(email=email, cpf=cpf)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)

    return {"evaluations": [ClientOut.model_validate(c).to_json() for c in clients]}
