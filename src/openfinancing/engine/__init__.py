"""Financing engine — investment orchestration, funding rules and payback."""

from openfinancing.engine.funding import FundingStateMachine, PaybackApplication
from openfinancing.engine.issuers import IssuerBootstrap, IssuerRegistry
from openfinancing.engine.locks import ProjectLocks
from openfinancing.engine.orchestrator import InvestmentOrchestrator, InvestmentOutcome
from openfinancing.engine.payback import (
    PaybackClass,
    PaybackLedger,
    PaybackOutcome,
    RepaymentResult,
    RepaymentService,
)
from openfinancing.engine.payments import PaymentCollector

__all__ = [
    "FundingStateMachine",
    "PaybackApplication",
    "IssuerBootstrap",
    "IssuerRegistry",
    "ProjectLocks",
    "InvestmentOrchestrator",
    "InvestmentOutcome",
    "PaybackClass",
    "PaybackLedger",
    "PaybackOutcome",
    "RepaymentResult",
    "RepaymentService",
    "PaymentCollector",
]
