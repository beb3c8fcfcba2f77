"""
============================================================================
Evaluation Desk v1.0.0
Broker Service - Provisioning & Evaluation Orchestration
============================================================================

Reliability Level: L6 Critical
Input Constraints: ClientRecord read by the caller (its version is the
    concurrency token for the status write)
Side Effects:
    - Nelogica API calls (subscription, account, risk, teardown)
    - One client write after each successful remote call
    - Prometheus transition metrics

OPERATIONS:
    register_client_evaluation: subscription + account, store linkage
    start_evaluation:           risk profile on account, WAITING → IN_PROGRESS
    finish_evaluation:          remove account, IN_PROGRESS → APPROVED/REJECTED

ORDERING:
    Every precondition (state machine, linkage, plan mapping) is checked
    before the first remote call. The store is written only after the
    remote call succeeded. A crash in between leaves the record at its
    prior status; callers retry.

PARTIAL PROVISIONING:
    When the subscription is created but account creation fails, no
    cancellation is attempted and nothing is stored. PartialProvisioningError
    carries the created ids so an operator can cancel or resume.

ERROR CODES:
    - EVAL-001: Client has no broker account yet
    - EVAL-005: Client is already provisioned
    - BRK-API-005: Subscription created, account creation failed

============================================================================
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from app.broker.nelogica_client import (
    BrokerApiError,
    BrokerClientError,
    BrokerEnvironment,
    BrokerErrorCode,
    NelogicaApiClient,
    RiskProfile,
)
from app.database.models import ClientRecord
from app.database.repositories import ClientRepository, StaleRecordError
from app.observability.metrics import record_evaluation_transition
from services.evaluation_state_machine import (
    EvaluationStatus,
    StatusLike,
    require_transition,
    status_from_decision,
)
from services.plan_catalog import account_name, resolve_profile_id, split_name

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_EVALUATION_WINDOW_DAYS = 60

# accountType sent with the risk profile when an evaluation starts
EVALUATION_ACCOUNT_TYPE = 0

# Broker document type for CPF
CPF_DOCUMENT_TYPE = 1

DEFAULT_ADDRESS = {
    "country": "BRA",
    "city": "São Paulo",
    "state": "SP",
    "neighborhood": "Centro",
}


# =============================================================================
# Error Codes & Exceptions
# =============================================================================

class BrokerServiceErrorCode:
    NOT_PROVISIONED = "EVAL-001"
    ALREADY_PROVISIONED = "EVAL-005"


class NotProvisionedError(Exception):
    """Raised when an evaluation action needs broker linkage that is missing."""

    def __init__(self, client_id: str, missing: List[str]):
        self.error_code = BrokerServiceErrorCode.NOT_PROVISIONED
        self.client_id = client_id
        self.missing = missing
        self.message = (
            f"Client {client_id} is not provisioned on the broker "
            f"(missing: {', '.join(missing)})"
        )
        super().__init__(f"[{self.error_code}] {self.message}")


class AlreadyProvisionedError(Exception):
    def __init__(self, client_id: str):
        self.error_code = BrokerServiceErrorCode.ALREADY_PROVISIONED
        self.client_id = client_id
        self.message = f"Client {client_id} already has a broker subscription"
        super().__init__(f"[{self.error_code}] {self.message}")


class PartialProvisioningError(BrokerApiError):
    """Subscription exists on the broker, but its account could not be created."""

    def __init__(
        self,
        message: str,
        customer_id: str,
        subscription_id: str,
        license_id: str
    ):
        self.customer_id = customer_id
        self.subscription_id = subscription_id
        self.license_id = license_id
        super().__init__(
            f"{message} (subscription {subscription_id} / license {license_id} "
            f"left without account)",
            error_code=BrokerErrorCode.PARTIAL_PROVISIONING,
            operation="create_account",
        )


# =============================================================================
# Broker Service
# =============================================================================

class BrokerService:
    """
    Domain operations over the Nelogica client.

    Reliability Level: L6 Critical

    Example Usage:
        service = BrokerService(api_client, environment_id=env)
        client = await service.register_client_evaluation(client, ClientRepository(db))
        client = await service.start_evaluation(client, ClientRepository(db))
        client = await service.finish_evaluation(client, "Aprovado", ClientRepository(db))
    """

    def __init__(
        self,
        api: NelogicaApiClient,
        environment_id: str = "",
        evaluation_window_days: int = DEFAULT_EVALUATION_WINDOW_DAYS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.api = api
        self.environment_id = environment_id
        self.evaluation_window = timedelta(days=evaluation_window_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------------

    def build_subscription_params(self, client: ClientRecord) -> Dict[str, Any]:
        """Broker payload for subscription creation."""
        first_name, last_name = split_name(client.name)
        address = dict(DEFAULT_ADDRESS)
        address["street"] = client.address
        address["zipCode"] = client.zip_code
        params: Dict[str, Any] = {
            "firstName": first_name,
            "lastName": last_name,
            "email": client.email,
            "PhoneNumber": client.phone,
            "document": {
                "documentType": CPF_DOCUMENT_TYPE,
                "document": "".join(ch for ch in client.cpf if ch.isdigit()),
            },
            "address": address,
        }
        if client.birth_date is not None:
            params["birth"] = client.birth_date.strftime("%Y-%m-%d")
        return params

    async def register_client_evaluation(
        self,
        client: ClientRecord,
        store: ClientRepository
    ) -> ClientRecord:
        """
        Create the broker subscription and trading account for a client.

        trader_status is not changed.

        Raises:
            AlreadyProvisionedError: If the client already has a subscription
            UnknownPlanError: If the plan has no risk profile (no remote call made)
            BrokerApiError: If subscription creation fails
            PartialProvisioningError: If the account could not be created
            StaleRecordError: If the client changed while provisioning
        """
        if client.broker_subscription_id or client.is_provisioned:
            raise AlreadyProvisionedError(client.id)

        profile_id = resolve_profile_id(client.plan)
        params = self.build_subscription_params(client)

        logger.info(
            f"[BRK-SVC] Registering evaluation | client_id={client.id} | plan={client.plan}"
        )
        try:
            subscription = await self.api.create_subscription(params)
        except BrokerClientError as e:
            self._log_failure("create_subscription", client.id, e)
            raise

        accounts_spec = [{"name": account_name(client.name, client.plan), "profileId": profile_id}]
        try:
            accounts = await self.api.create_account(subscription.license_id, accounts_spec)
        except BrokerClientError as e:
            self._log_failure("create_account", client.id, e)
            logger.error(
                f"[{BrokerErrorCode.PARTIAL_PROVISIONING}] Partial provisioning | "
                f"client_id={client.id} | subscription_id={subscription.subscription_id} | "
                f"license_id={subscription.license_id}"
            )
            raise PartialProvisioningError(
                e.message,
                customer_id=subscription.customer_id,
                subscription_id=subscription.subscription_id,
                license_id=subscription.license_id,
            ) from e

        updated = self._write(
            store,
            client,
            "register_client_evaluation",
            broker_customer_id=subscription.customer_id,
            broker_subscription_id=subscription.subscription_id,
            broker_license_id=subscription.license_id,
            broker_account=accounts[0].account,
        )
        logger.info(
            f"[BRK-SVC] Evaluation registered | client_id={client.id} | "
            f"license_id={subscription.license_id} | account={accounts[0].account}"
        )
        return updated

    # -------------------------------------------------------------------------
    # Evaluation lifecycle
    # -------------------------------------------------------------------------

    async def start_evaluation(self, client: ClientRecord, store: ClientRepository) -> ClientRecord:
        """
        Apply the plan's risk profile and move the client to IN_PROGRESS.

        start_date is now; end_date is now plus the evaluation window.

        Raises:
            NotProvisionedError: If license or account is missing
            InvalidTransitionError: If the client is not WAITING
            UnknownPlanError: If the plan has no risk profile (no remote call made)
            BrokerApiError: If the broker rejects the risk update
        """
        self._require_linkage(client, ("broker_license_id", "broker_account"))
        target = require_transition(
            client.trader_status, EvaluationStatus.IN_PROGRESS, client_id=client.id
        )
        profile_id = resolve_profile_id(client.plan)

        try:
            await self.api.set_account_risk(
                client.broker_license_id,
                client.broker_account,
                profile_id,
                EVALUATION_ACCOUNT_TYPE,
            )
        except BrokerClientError as e:
            self._log_failure("set_account_risk", client.id, e)
            raise

        now = self._clock()
        previous = client.trader_status
        updated = self._write(
            store,
            client,
            "start_evaluation",
            trader_status=target.value,
            start_date=now,
            end_date=now + self.evaluation_window,
        )
        record_evaluation_transition(previous, target.value)
        logger.info(
            f"[BRK-SVC] Evaluation started | client_id={client.id} | "
            f"end_date={(now + self.evaluation_window).isoformat()}"
        )
        return updated

    async def finish_evaluation(
        self,
        client: ClientRecord,
        decision: StatusLike,
        store: ClientRepository
    ) -> ClientRecord:
        """
        Remove the broker account and close the evaluation.

        Args:
            decision: "Aprovado" or "Reprovado" (or the EvaluationStatus)

        end_date and cancellation_date are set to the same instant.

        Raises:
            InvalidTransitionError: For any other decision, or client not IN_PROGRESS
            NotProvisionedError: If license, subscription or account is missing
            BrokerApiError: If the account removal fails
        """
        target = status_from_decision(decision)
        self._require_linkage(
            client, ("broker_license_id", "broker_subscription_id", "broker_account")
        )
        require_transition(client.trader_status, target, client_id=client.id)

        try:
            await self.api.remove_account(client.broker_license_id, client.broker_account)
        except BrokerClientError as e:
            self._log_failure("remove_account", client.id, e)
            raise

        now = self._clock()
        previous = client.trader_status
        updated = self._write(
            store,
            client,
            "finish_evaluation",
            trader_status=target.value,
            end_date=now,
            cancellation_date=now,
        )
        record_evaluation_transition(previous, target.value)
        logger.info(
            f"[BRK-SVC] Evaluation finished | client_id={client.id} | status={target.value}"
        )
        return updated

    # -------------------------------------------------------------------------
    # Operator pass-throughs
    # -------------------------------------------------------------------------

    async def block_client_account(self, client: ClientRecord) -> None:
        self._require_linkage(client, ("broker_license_id", "broker_account"))
        try:
            await self.api.block_account(client.broker_license_id, client.broker_account)
        except BrokerClientError as e:
            self._log_failure("block_account", client.id, e)
            raise

    async def unblock_client_account(self, client: ClientRecord) -> None:
        self._require_linkage(client, ("broker_license_id", "broker_account"))
        try:
            await self.api.unblock_account(client.broker_license_id, client.broker_account)
        except BrokerClientError as e:
            self._log_failure("unblock_account", client.id, e)
            raise

    async def cancel_client_subscription(self, client: ClientRecord) -> None:
        self._require_linkage(client, ("broker_subscription_id",))
        try:
            await self.api.cancel_subscription(client.broker_subscription_id)
        except BrokerClientError as e:
            self._log_failure("cancel_subscription", client.id, e)
            raise

    async def list_environments(self) -> List[BrokerEnvironment]:
        return await self.api.list_environments()

    async def list_risk_profiles(self) -> List[RiskProfile]:
        return await self.api.list_risk_profiles(self.environment_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_linkage(self, client: ClientRecord, fields) -> None:
        missing = [name for name in fields if not getattr(client, name)]
        if missing:
            logger.warning(
                f"[{BrokerServiceErrorCode.NOT_PROVISIONED}] Broker linkage missing | "
                f"client_id={client.id} | missing={','.join(missing)}"
            )
            raise NotProvisionedError(client.id, missing)

    def _write(
        self,
        store: ClientRepository,
        client: ClientRecord,
        operation: str,
        **values: Any
    ) -> ClientRecord:
        try:
            return store.update(client.id, client.version, **values)
        except StaleRecordError:
            # Remote side already changed; the stored record no longer matches it
            logger.error(
                f"[BRK-SVC] Remote call succeeded but store write was stale | "
                f"operation={operation} | client_id={client.id} | values={_loggable(values)}"
            )
            raise

    def _log_failure(self, operation: str, client_id: str, error: Exception) -> None:
        logger.error(
            f"[BRK-SVC] Broker operation failed | operation={operation} | "
            f"client_id={client_id} | error={error}"
        )


def _loggable(values: Dict[str, Any]) -> Dict[str, str]:
    return {
        key: (value.value if isinstance(value, EvaluationStatus) else str(value))
        for key, value in values.items()
    }


__all__ = [
    "BrokerServiceErrorCode",
    "NotProvisionedError",
    "AlreadyProvisionedError",
    "PartialProvisioningError",
    "BrokerService",
    "DEFAULT_EVALUATION_WINDOW_DAYS",
    "EVALUATION_ACCOUNT_TYPE",
]
