"""
============================================================================
Evaluation Desk v1.0.0
Evaluations API - Operator Endpoints
============================================================================

Reliability Level: L6 Critical
Input Constraints: Bearer API key on every route
Side Effects:
    - Broker calls (provision, risk, removal, block, cancel)
    - Client status writes (version checked)
    - Contact log inserts

ENDPOINTS:
    GET  /evaluations/awaiting
    GET  /evaluations/in-progress
    GET  /evaluations/reproved
    POST /evaluations/{client_id}/register
    POST /evaluations/{client_id}/start
    POST /evaluations/{client_id}/finish
    POST /evaluations/{client_id}/block
    POST /evaluations/{client_id}/unblock
    POST /evaluations/{client_id}/cancel-subscription
    POST /evaluations/{client_id}/contacts
    GET  /evaluations/{client_id}/contacts
    GET  /dashboard/stats

A failed action leaves the client in its prior status; the operator may
retry it.

============================================================================
"""

import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import (
    get_broker_service,
    get_client_repository,
    get_evaluation_queries,
)
from app.api.errors import DOMAIN_ERRORS, domain_error_response
from app.auth.security import require_api_key
from app.database.repositories import ClientRepository
from app.schemas.client import (
    ClientOut,
    ContactOut,
    ContactRequest,
    FinishEvaluationRequest,
    ReprovedClientOut,
)
from services.broker_service import BrokerService
from services.evaluation_queries import EvaluationQueries

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])


def _client_json(client) -> dict:
    return ClientOut.model_validate(client).to_json()


# ============================================================================
# LISTS
# ============================================================================

@router.get("/evaluations/awaiting")
async def list_awaiting(queries: EvaluationQueries = Depends(get_evaluation_queries)):
    return {"clients": [_client_json(c) for c in queries.awaiting()]}


@router.get("/evaluations/in-progress")
async def list_in_progress(queries: EvaluationQueries = Depends(get_evaluation_queries)):
    return {"clients": [_client_json(c) for c in queries.in_progress()]}


@router.get("/evaluations/reproved")
async def list_reproved(queries: EvaluationQueries = Depends(get_evaluation_queries)):
    """Rejected clients with their outreach history."""
    return {
        "clients": [ReprovedClientOut.model_validate(c).to_json() for c in queries.reproved()]
    }


# ============================================================================
# EVALUATION ACTIONS
# ============================================================================

@router.post("/evaluations/{client_id}/register")
async def register_evaluation(
    client_id: str,
    store: ClientRepository = Depends(get_client_repository),
    service: BrokerService = Depends(get_broker_service)
):
    """Provision the broker subscription and account."""
    try:
        client = await service.register_client_evaluation(store.get(client_id), store)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return {"message": "Conta criada na plataforma", "client": _client_json(client)}


@router.post("/evaluations/{client_id}/start")
async def start_evaluation(
    client_id: str,
    store: ClientRepository = Depends(get_client_repository),
    service: BrokerService = Depends(get_broker_service)
):
    try:
        client = await service.start_evaluation(store.get(client_id), store)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return {"message": "Avaliação iniciada", "client": _client_json(client)}


@router.post("/evaluations/{client_id}/finish")
async def finish_evaluation(
    client_id: str,
    body: FinishEvaluationRequest,
    store: ClientRepository = Depends(get_client_repository),
    service: BrokerService = Depends(get_broker_service)
):
    try:
        client = await service.finish_evaluation(store.get(client_id), body.status, store)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return {"message": "Avaliação finalizada", "client": _client_json(client)}


@router.post("/evaluations/{client_id}/block")
async def block_account(
    client_id: str,
    store: ClientRepository = Depends(get_client_repository),
    service: BrokerService = Depends(get_broker_service)
):
    try:
        await service.block_client_account(store.get(client_id))
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return {"message": "Conta bloqueada"}


@router.post("/evaluations/{client_id}/unblock")
async def unblock_account(
    client_id: str,
    store: ClientRepository = Depends(get_client_repository),
    service: BrokerService = Depends(get_broker_service)
):
    try:
        await service.unblock_client_account(store.get(client_id))
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return {"message": "Conta desbloqueada"}


@router.post("/evaluations/{client_id}/cancel-subscription")
async def cancel_subscription(
    client_id: str,
    store: ClientRepository = Depends(get_client_repository),
    service: BrokerService = Depends(get_broker_service)
):
    try:
        await service.cancel_client_subscription(store.get(client_id))
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return {"message": "Assinatura cancelada"}


# ============================================================================
# CONTACT LOG
# ============================================================================

@router.post("/evaluations/{client_id}/contacts", status_code=201)
async def add_contact(
    client_id: str,
    body: ContactRequest,
    queries: EvaluationQueries = Depends(get_evaluation_queries)
):
    try:
        contact = queries.add_contact(client_id, body.status, body.date, body.notes)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return ContactOut.model_validate(contact).to_json()


@router.get("/evaluations/{client_id}/contacts")
async def contact_history(
    client_id: str,
    queries: EvaluationQueries = Depends(get_evaluation_queries)
):
    try:
        contacts = queries.contact_history(client_id)
    except DOMAIN_ERRORS as e:
        return domain_error_response(e)
    return {"contacts": [ContactOut.model_validate(c).to_json() for c in contacts]}


# ============================================================================
# DASHBOARD
# ============================================================================

@router.get("/dashboard/stats")
async def dashboard_stats(queries: EvaluationQueries = Depends(get_evaluation_queries)):
    stats = queries.dashboard_stats()
    stats["clientsByPlan"] = queries.clients_by_plan()
    stats["evaluationsByMonth"] = queries.evaluations_by_month()
    stats["recentClients"] = [_client_json(c) for c in queries.recent_clients()]
    return stats
