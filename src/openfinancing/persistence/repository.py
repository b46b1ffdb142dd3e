"""Typed access to stored entities.

Maps store buckets to model dataclasses and turns a missing record into
a NotFoundError, so engine code never handles raw dicts.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, TypeVar

from openfinancing.errors import NotFoundError
from openfinancing.models.bond import ConstructionBond
from openfinancing.models.investment import InvestmentRecord
from openfinancing.models.participants import ContractEntity, Investor, Recipient
from openfinancing.models.project import Project
from openfinancing.persistence.store import EntityStore

PROJECTS = "projects"
INVESTORS = "investors"
RECIPIENTS = "recipients"
ENTITIES = "entities"
BONDS = "bonds"
INVESTMENTS = "investments"
ISSUERS = "issuers"

T = TypeVar("T")


class EntityRepository:
    """Typed get/put/list over an EntityStore."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    @property
    def store(self) -> EntityStore:
        return self._store

    def next_index(self, bucket: str) -> int:
        return self._store.allocate_index(bucket)

    # Projects

    def get_project(self, index: int) -> Project:
        return self._get(PROJECTS, index, Project.from_dict, "Project")

    def put_project(self, project: Project) -> None:
        self._store.put(PROJECTS, project.index, project.to_dict())

    def list_projects(self) -> list[Project]:
        return [Project.from_dict(r) for r in self._store.list_all(PROJECTS)]

    # Participants

    def get_investor(self, index: int) -> Investor:
        return self._get(INVESTORS, index, Investor.from_dict, "Investor")

    def put_investor(self, investor: Investor) -> None:
        self._store.put(INVESTORS, investor.index, investor.to_dict())

    def list_investors(self) -> list[Investor]:
        return [Investor.from_dict(r) for r in self._store.list_all(INVESTORS)]

    def get_recipient(self, index: int) -> Recipient:
        return self._get(RECIPIENTS, index, Recipient.from_dict, "Recipient")

    def put_recipient(self, recipient: Recipient) -> None:
        self._store.put(RECIPIENTS, recipient.index, recipient.to_dict())

    def list_recipients(self) -> list[Recipient]:
        return [Recipient.from_dict(r) for r in self._store.list_all(RECIPIENTS)]

    def get_entity(self, index: int) -> ContractEntity:
        return self._get(ENTITIES, index, ContractEntity.from_dict, "Entity")

    def put_entity(self, entity: ContractEntity) -> None:
        self._store.put(ENTITIES, entity.index, entity.to_dict())

    # Bonds

    def get_bond(self, index: int) -> ConstructionBond:
        return self._get(BONDS, index, ConstructionBond.from_dict, "Bond")

    def put_bond(self, bond: ConstructionBond) -> None:
        self._store.put(BONDS, bond.index, bond.to_dict())

    def list_bonds(self) -> list[ConstructionBond]:
        return [ConstructionBond.from_dict(r) for r in self._store.list_all(BONDS)]

    # Investment step cursors

    def find_investment(self, investment_id: str) -> Optional[InvestmentRecord]:
        data = self._store.get(INVESTMENTS, investment_id)
        return InvestmentRecord.from_dict(data) if data is not None else None

    def put_investment(self, record: InvestmentRecord) -> None:
        self._store.put(INVESTMENTS, record.investment_id, record.to_dict())

    def list_investments(self) -> list[InvestmentRecord]:
        return [InvestmentRecord.from_dict(r) for r in self._store.list_all(INVESTMENTS)]

    # Internal

    def _get(
        self,
        bucket: str,
        index: int,
        decode: Callable[[dict[str, Any]], T],
        label: str,
    ) -> T:
        data = self._store.get(bucket, index)
        if data is None:
            raise NotFoundError(f"{label} not found: {index}")
        return decode(data)
