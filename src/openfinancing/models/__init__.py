"""Core data models for OpenFinancing."""

from openfinancing.models.assets import Asset, AssetRole, INVESTMENT_ROLES
from openfinancing.models.bond import ConstructionBond
from openfinancing.models.investment import InvestmentRecord, InvestmentStep
from openfinancing.models.participants import (
    ContractEntity,
    EntityKind,
    Investor,
    Recipient,
)
from openfinancing.models.project import (
    INVESTABLE_STAGES,
    POST_FUNDING_STAGES,
    PROJECT_TRANSITIONS,
    Project,
    ProjectStage,
)

__all__ = [
    "Asset",
    "AssetRole",
    "INVESTMENT_ROLES",
    "ConstructionBond",
    "InvestmentRecord",
    "InvestmentStep",
    "ContractEntity",
    "EntityKind",
    "Investor",
    "Recipient",
    "INVESTABLE_STAGES",
    "POST_FUNDING_STAGES",
    "PROJECT_TRANSITIONS",
    "Project",
    "ProjectStage",
]
