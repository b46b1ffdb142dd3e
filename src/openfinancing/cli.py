"""OpenFinancing CLI — command-line interface for the financing engine.

Usage:
    python -m openfinancing.cli status
    python -m openfinancing.cli init-platform
    python -m openfinancing.cli register-investor --name Alice --password pw --email a@example.org
    python -m openfinancing.cli register-recipient --name "Village school" --password pw
    python -m openfinancing.cli propose-project --title "Solar roof" --total 1000 --years 5 \
        --metadata "roof-42" --recipient 1
    python -m openfinancing.cli open-project --project 1
    python -m openfinancing.cli issue-stablecoin --investor 1 --amount 1000
    python -m openfinancing.cli invest --project 1 --investor 1 --password pw --amount 1000 \
        --recipient 1 --recipient-password pw
    python -m openfinancing.cli payback --project 1 --recipient 1 --password pw --amount 200

Passwords for the platform and issuer keystores come from the environment
(OPENFINANCING_PLATFORM_PASSWORD, OPENFINANCING_ISSUER_PASSWORD), loaded
from a .env file in the working directory or the repository root.

With ``--ledger memory`` (the default) the ledger is a local simulated
network whose state is kept in ``<data>/ledger.json`` between runs. With
``--ledger evm`` the registry contract at OPENFINANCING_REGISTRY_ADDRESS is
used through OPENFINANCING_RPC_URL.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from openfinancing.config import DEFAULT_CONFIG_DIR, EngineConfig, Secrets
from openfinancing.errors import FinancingError
from openfinancing.identity.session import SessionContext
from openfinancing.ledger.adapter import LedgerAdapter
from openfinancing.ledger.evm import EvmLedgerClient
from openfinancing.ledger.memory import InMemoryLedger
from openfinancing.models.participants import EntityKind
from openfinancing.models.project import ProjectStage
from openfinancing.notify.notifier import LogNotifier, NotificationDispatcher, SmtpNotifier
from openfinancing.persistence.event_log import EventLog
from openfinancing.persistence.repository import EntityRepository
from openfinancing.persistence.store import JsonFileEntityStore
from openfinancing.service import FinancingService, ServiceResult

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DATA = ROOT / "data"
LEDGER_SNAPSHOT = "ledger.json"


class Runtime:
    """A service plus whatever must be saved when the command finishes."""

    def __init__(self, args: argparse.Namespace) -> None:
        self.args = args
        self.config = EngineConfig.from_config_dir(args.config)
        data_dir: Path = args.data
        data_dir.mkdir(parents=True, exist_ok=True)
        self._snapshot_path: Optional[Path] = None
        self._memory: Optional[InMemoryLedger] = None

        if args.ledger == "evm":
            secrets = Secrets.from_env()
            if not secrets.registry_address:
                raise ValueError("OPENFINANCING_REGISTRY_ADDRESS must be set for --ledger evm")
            client: Any = EvmLedgerClient(
                registry_address=secrets.registry_address,
                rpc_url=secrets.rpc_url,
                chain_id=secrets.chain_id or 11155111,
            )
        else:
            self._snapshot_path = data_dir / LEDGER_SNAPSHOT
            if self._snapshot_path.exists():
                self._memory = InMemoryLedger.restore(
                    json.loads(self._snapshot_path.read_text(encoding="utf-8"))
                )
            else:
                self._memory = InMemoryLedger(faucet_amount=self.config.faucet_amount)
            client = self._memory

        self.service = FinancingService(
            EntityRepository(JsonFileEntityStore(data_dir / "store")),
            LedgerAdapter(client, testnet=self.config.is_testnet),
            self.config,
            dispatcher=_make_dispatcher(self.config),
            event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        )

    def session(
        self,
        investor: Optional[int] = None,
        investor_password: Optional[str] = None,
        recipient: Optional[int] = None,
        recipient_password: Optional[str] = None,
    ) -> SessionContext:
        secrets = Secrets.from_env()
        return self.service.open_session(
            secrets.platform_password,
            secrets.issuer_password,
            investor_index=investor,
            investor_password=investor_password,
            recipient_index=recipient,
            recipient_password=recipient_password,
        )

    def save(self) -> None:
        if self._memory is not None and self._snapshot_path is not None:
            self._snapshot_path.write_text(
                json.dumps(self._memory.snapshot(), indent=2, sort_keys=True),
                encoding="utf-8",
            )


def _make_dispatcher(config: EngineConfig) -> NotificationDispatcher:
    if not config.notifications_enabled:
        return NotificationDispatcher(LogNotifier(), enabled=False)
    smtp_user = os.getenv("OPENFINANCING_SMTP_USER")
    if smtp_user:
        notifier: Any = SmtpNotifier(
            config.smtp_host, config.smtp_port, config.notification_sender,
            username=smtp_user, password=os.getenv("OPENFINANCING_SMTP_PASSWORD"),
        )
    else:
        notifier = LogNotifier()
    # CLI commands exit right after the call; deliver inline.
    return NotificationDispatcher(notifier, asynchronous=False)


def _emit(result: ServiceResult) -> int:
    print(json.dumps({
        "success": result.success,
        "errors": result.errors,
        "error_code": result.error_code,
        "retry_safe": result.retry_safe,
        "data": result.data,
    }, indent=2, sort_keys=True))
    return 0 if result.success else 1


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

def cmd_status(rt: Runtime, args: argparse.Namespace) -> int:
    print(json.dumps(rt.service.status(), indent=2))
    return 0


def cmd_init_platform(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.init_platform(Secrets.from_env().platform_password))


def cmd_issue_stablecoin(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.issue_stablecoin(
        args.investor, args.amount, Secrets.from_env().platform_password,
    ))


def cmd_register_investor(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.register_investor(
        args.name, args.password, email=args.email or "", notify=args.notify,
    ))


def cmd_register_recipient(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.register_recipient(
        args.name, args.password, email=args.email or "", notify=args.notify,
    ))


def cmd_register_entity(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.register_entity(
        args.name, EntityKind(args.kind), description=args.description or "",
        email=args.email,
    ))


def cmd_propose_project(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.propose_project(
        title=args.title,
        total_value=args.total,
        years=args.years,
        metadata=args.metadata,
        recipient_index=args.recipient,
        originator_index=args.originator,
        location=args.location or "",
        description=args.description or "",
    ))


def cmd_open_project(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.open_project(args.project, contractor_index=args.contractor))


def _cmd_invest(rt: Runtime, args: argparse.Namespace, seed: bool) -> int:
    session = rt.session(
        investor=args.investor,
        investor_password=args.password,
        recipient=args.recipient if args.recipient_password else None,
        recipient_password=args.recipient_password,
    )
    invest = rt.service.seed_invest if seed else rt.service.invest
    return _emit(invest(
        args.project, args.investor, args.recipient, args.amount, session,
        investment_id=args.investment_id,
    ))


def cmd_invest(rt: Runtime, args: argparse.Namespace) -> int:
    return _cmd_invest(rt, args, seed=False)


def cmd_seed_invest(rt: Runtime, args: argparse.Namespace) -> int:
    return _cmd_invest(rt, args, seed=True)


def cmd_complete_funding(rt: Runtime, args: argparse.Namespace) -> int:
    session = rt.session(recipient=args.recipient, recipient_password=args.password)
    return _emit(rt.service.complete_funding(args.project, session))


def cmd_payback(rt: Runtime, args: argparse.Namespace) -> int:
    session = rt.session(recipient=args.recipient, recipient_password=args.password)
    return _emit(rt.service.payback(args.project, args.recipient, args.amount, session))


def cmd_show_project(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.get_project(args.project))


def cmd_list_projects(rt: Runtime, args: argparse.Namespace) -> int:
    stage = ProjectStage(args.stage) if args.stage else None
    return _emit(rt.service.list_projects(stage))


def cmd_new_bond(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.new_bond(
        title=args.title,
        maturation_date=args.maturation_date,
        security_type=args.security_type,
        interest_rate=args.interest_rate,
        rating=args.rating,
        bond_issuer=args.bond_issuer,
        underwriter=args.underwriter,
        cost_of_unit=args.cost_of_unit,
        no_of_units=args.units,
        recipient_index=args.recipient,
    ))


def cmd_invest_bond(rt: Runtime, args: argparse.Namespace) -> int:
    session = rt.session(investor=args.investor, investor_password=args.password)
    return _emit(rt.service.invest_in_bond(args.bond, args.investor, args.amount, session))


def cmd_show_bond(rt: Runtime, args: argparse.Namespace) -> int:
    return _emit(rt.service.get_bond(args.bond))


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="openfinancing",
        description="OpenFinancing investment and asset-issuance engine",
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_DIR,
                        help="Config directory")
    parser.add_argument("--data", type=Path, default=DEFAULT_DATA, help="Data directory")
    parser.add_argument("--ledger", choices=["memory", "evm"], default="memory",
                        help="Ledger backend")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show platform status")
    sub.add_parser("init-platform", help="Create the platform account")

    p = sub.add_parser("issue-stablecoin", help="Credit an investor with test stablecoin")
    p.add_argument("--investor", type=int, required=True)
    p.add_argument("--amount", required=True, help="Amount (decimal string)")

    for name, help_text in (("register-investor", "Register an investor"),
                            ("register-recipient", "Register a recipient")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--name", required=True)
        p.add_argument("--password", required=True, help="Keystore password")
        p.add_argument("--email")
        p.add_argument("--notify", action="store_true", help="Send email notifications")

    p = sub.add_parser("register-entity", help="Register an originator or contractor")
    p.add_argument("--name", required=True)
    p.add_argument("--kind", required=True, choices=[k.value for k in EntityKind])
    p.add_argument("--description")
    p.add_argument("--email")

    p = sub.add_parser("propose-project", help="Propose a project")
    p.add_argument("--title", required=True)
    p.add_argument("--total", required=True, help="Total value (decimal string)")
    p.add_argument("--years", type=int, required=True)
    p.add_argument("--metadata", required=True)
    p.add_argument("--recipient", type=int, required=True)
    p.add_argument("--originator", type=int)
    p.add_argument("--location")
    p.add_argument("--description")

    p = sub.add_parser("open-project", help="Open a proposed project for investment")
    p.add_argument("--project", type=int, required=True)
    p.add_argument("--contractor", type=int)

    for name, help_text in (("invest", "Invest in a project"),
                            ("seed-invest", "Seed-invest in a project")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--project", type=int, required=True)
        p.add_argument("--investor", type=int, required=True)
        p.add_argument("--password", required=True, help="Investor keystore password")
        p.add_argument("--recipient", type=int, required=True)
        p.add_argument("--recipient-password",
                       help="Recipient keystore password (needed when this completes funding)")
        p.add_argument("--amount", required=True, help="Amount (decimal string)")
        p.add_argument("--investment-id", help="Resume a previous attempt")

    p = sub.add_parser("complete-funding", help="Re-run funding completion")
    p.add_argument("--project", type=int, required=True)
    p.add_argument("--recipient", type=int, required=True)
    p.add_argument("--password", required=True, help="Recipient keystore password")

    p = sub.add_parser("payback", help="Pay back debt tokens")
    p.add_argument("--project", type=int, required=True)
    p.add_argument("--recipient", type=int, required=True)
    p.add_argument("--password", required=True, help="Recipient keystore password")
    p.add_argument("--amount", required=True, help="Amount (decimal string)")

    p = sub.add_parser("show-project", help="Show a project")
    p.add_argument("--project", type=int, required=True)

    p = sub.add_parser("list-projects", help="List projects")
    p.add_argument("--stage", choices=[s.value for s in ProjectStage])

    p = sub.add_parser("new-bond", help="Create a construction bond")
    p.add_argument("--title", required=True)
    p.add_argument("--maturation-date", required=True)
    p.add_argument("--security-type", required=True)
    p.add_argument("--interest-rate", required=True)
    p.add_argument("--rating", required=True)
    p.add_argument("--bond-issuer", required=True)
    p.add_argument("--underwriter", required=True)
    p.add_argument("--cost-of-unit", required=True)
    p.add_argument("--units", type=int, required=True)
    p.add_argument("--recipient", type=int, required=True)

    p = sub.add_parser("invest-bond", help="Buy a construction bond unit")
    p.add_argument("--bond", type=int, required=True)
    p.add_argument("--investor", type=int, required=True)
    p.add_argument("--password", required=True, help="Investor keystore password")
    p.add_argument("--amount", required=True)

    p = sub.add_parser("show-bond", help="Show a construction bond")
    p.add_argument("--bond", type=int, required=True)

    return parser


COMMANDS = {
    "status": cmd_status,
    "init-platform": cmd_init_platform,
    "issue-stablecoin": cmd_issue_stablecoin,
    "register-investor": cmd_register_investor,
    "register-recipient": cmd_register_recipient,
    "register-entity": cmd_register_entity,
    "propose-project": cmd_propose_project,
    "open-project": cmd_open_project,
    "invest": cmd_invest,
    "seed-invest": cmd_seed_invest,
    "complete-funding": cmd_complete_funding,
    "payback": cmd_payback,
    "show-project": cmd_show_project,
    "list-projects": cmd_list_projects,
    "new-bond": cmd_new_bond,
    "invest-bond": cmd_invest_bond,
    "show-bond": cmd_show_bond,
}


def main(argv: list[str] | None = None) -> int:
    load_dotenv(Path.cwd() / ".env")
    load_dotenv(ROOT / ".env")

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        rt = Runtime(args)
    except (ValueError, OSError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    try:
        return handler(rt, args)
    except (FinancingError, ValueError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    finally:
        rt.save()


if __name__ == "__main__":
    raise SystemExit(main())
