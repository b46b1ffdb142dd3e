"""Notification message templates.

Each template turns an engine event into a subject and a plain-text body
listing the transaction references the participant can look up on the
ledger.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Mapping


class NotificationKind(str, enum.Enum):
    INVESTMENT = "investment"
    SEED_INVESTMENT = "seed_investment"
    BOND_INVESTMENT = "bond_investment"
    PROJECT_FUNDED = "project_funded"
    PAYBACK = "payback"


@dataclass(frozen=True)
class Notification:
    """A message addressed to one participant."""
    kind: NotificationKind
    recipient_email: str
    subject: str
    body: str
    tx_refs: Mapping[str, str] = field(default_factory=dict)


_SUBJECTS = {
    NotificationKind.INVESTMENT: "Your investment in project {index} is confirmed",
    NotificationKind.SEED_INVESTMENT: "Your seed investment in project {index} is confirmed",
    NotificationKind.BOND_INVESTMENT: "Your investment in bond {index} is confirmed",
    NotificationKind.PROJECT_FUNDED: "Project {index} is funded",
    NotificationKind.PAYBACK: "Payback received for project {index}",
}

_INTROS = {
    NotificationKind.INVESTMENT: (
        "Your investment in project {index} went through. "
        "The ledger transactions are listed below."
    ),
    NotificationKind.SEED_INVESTMENT: (
        "Your seed investment in project {index} went through. "
        "The ledger transactions are listed below."
    ),
    NotificationKind.BOND_INVESTMENT: (
        "Your purchase of bond {index} went through. "
        "The ledger transactions are listed below."
    ),
    NotificationKind.PROJECT_FUNDED: (
        "Project {index} has reached its funding target. Debt and payback "
        "tokens have been issued to your account."
    ),
    NotificationKind.PAYBACK: (
        "We received your payback for project {index}."
    ),
}


def render(
    kind: NotificationKind,
    email: str,
    index: int,
    tx_refs: Mapping[str, str],
    details: Mapping[str, str] | None = None,
) -> Notification:
    lines = [_INTROS[kind].format(index=index), ""]
    for label, value in (details or {}).items():
        lines.append(f"{label}: {value}")
    if details:
        lines.append("")
    for label, tx in tx_refs.items():
        lines.append(f"{label}: {tx}")
    return Notification(
        kind=kind,
        recipient_email=email,
        subject=_SUBJECTS[kind].format(index=index),
        body="\n".join(lines) + "\n",
        tx_refs=dict(tx_refs),
    )
