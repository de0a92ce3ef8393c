# /app/core/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.core.clock import Clock, utc_now
from app.core.config import Settings
from app.services.collaborators import Collaborators
from app.services.contract_service import ContractService
from app.services.legal_flow_service import LegalFlowService
from app.services.legal_integration_service import LegalIntegrationService
from app.services.lifecycle_service import LifecycleService
from app.services.rules_engine import RulesEngine
from app.services.signing_service import SigningService
from app.services.validation_service import ValidationService


@dataclass(frozen=True)
class ContractServices:
    contracts: ContractService
    signing: SigningService
    lifecycle: LifecycleService
    validation: ValidationService
    rules: RulesEngine
    legal: LegalIntegrationService
    flow: LegalFlowService


def build_services(
    settings: Settings,
    collaborators: Collaborators,
    *,
    clock: Clock = utc_now,
) -> ContractServices:
    """
    One clock, one lifecycle log, shared by every service of the app.
    """
    lifecycle = LifecycleService(clock=clock)
    validation = ValidationService()
    legal = LegalIntegrationService(collaborators, clock=clock)
    return ContractServices(
        contracts=ContractService(clock=clock, lifecycle=lifecycle, token_prefix=settings.contract_token_prefix),
        signing=SigningService(collaborators, clock=clock, lifecycle=lifecycle, validation=validation),
        lifecycle=lifecycle,
        validation=validation,
        rules=RulesEngine(clock=clock),
        legal=legal,
        flow=LegalFlowService(
            collaborators,
            clock=clock,
            lifecycle=lifecycle,
            legal=legal,
            currency=settings.default_currency,
        ),
    )


def get_services(request: Request) -> ContractServices:
    return request.app.state.services


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")
