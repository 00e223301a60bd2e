import argparse
import asyncio
import json
import sys
import uuid
from decimal import Decimal, InvalidOperation

from sqlalchemy import select

from app.core import security
from app.core.dependencies import Role
from app.db.session import SessionLocal
from app.models.credit import CreditReferenceType, TenantCreditBalance
from app.services import credit_ledger


def _parse_uuid(raw: str, *, label: str) -> uuid.UUID:
    try:
        return uuid.UUID((raw or "").strip())
    except ValueError:
        raise SystemExit(f"Invalid {label}: {raw!r}")


def _parse_amount(raw: str) -> Decimal:
    try:
        amount = Decimal((raw or "").strip())
    except InvalidOperation:
        raise SystemExit(f"Invalid amount: {raw!r}")
    if amount <= 0:
        raise SystemExit("Amount must be positive")
    return amount


async def grant_credits(
    *, tenant_id: uuid.UUID, amount: Decimal, description: str | None, actor_id: uuid.UUID | None
) -> None:
    async with SessionLocal() as session:
        try:
            entry = await credit_ledger.credit(
                session,
                tenant_id=tenant_id,
                amount=amount,
                reference_id=None,
                reference_type=CreditReferenceType.manual_grant,
                description=description or "Manual credit grant",
                created_by=actor_id,
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    print(json.dumps({"tenant_id": str(tenant_id), "amount": str(entry.amount), "balance": str(entry.balance_after)}))


async def ledger_audit(*, tenant_id: uuid.UUID | None) -> bool:
    """Replay every (or one) tenant ledger; returns False if any stored balance drifted."""
    async with SessionLocal() as session:
        if tenant_id is not None:
            tenant_ids = [tenant_id]
        else:
            tenant_ids = list((await session.execute(select(TenantCreditBalance.tenant_id))).scalars().all())
        consistent = True
        for tid in tenant_ids:
            replay = await credit_ledger.replay_balance(session, tenant_id=tid)
            consistent = consistent and replay.consistent
            print(
                json.dumps(
                    {
                        "tenant_id": str(tid),
                        "consistent": replay.consistent,
                        "transactions": replay.transaction_count,
                        "stored_balance": str(replay.stored.balance),
                        "replayed_balance": str(replay.replayed_balance),
                        "stored_spent": str(replay.stored.total_spent),
                        "replayed_spent": str(replay.replayed_spent),
                    }
                )
            )
    return consistent


def _add_credit_commands(subparsers) -> None:
    grant = subparsers.add_parser("grant-credits", help="Credit a tenant balance outside the request workflow")
    grant.add_argument("--tenant-id", required=True, help="Tenant UUID")
    grant.add_argument("--amount", required=True, help="Credits to add")
    grant.add_argument("--description", help="Ledger description")
    grant.add_argument("--actor-id", help="User UUID recorded as created_by")

    audit = subparsers.add_parser("ledger-audit", help="Rebuild balances from the ledger and report drift")
    audit.add_argument("--tenant-id", help="Limit the audit to one tenant")


def _add_token_command(subparsers) -> None:
    token = subparsers.add_parser("issue-token", help="Mint a bearer token for local testing")
    token.add_argument("--user-id", required=True, help="User UUID (sub claim)")
    token.add_argument("--tenant-id", help="Tenant UUID (omit for super admins)")
    token.add_argument("--role", default=Role.tenant_admin.value, choices=[r.value for r in Role])


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Credit ledger maintenance utilities")
    subparsers = parser.add_subparsers(dest="command")
    _add_credit_commands(subparsers)
    _add_token_command(subparsers)
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "grant-credits":
        asyncio.run(
            grant_credits(
                tenant_id=_parse_uuid(args.tenant_id, label="tenant id"),
                amount=_parse_amount(args.amount),
                description=args.description,
                actor_id=_parse_uuid(args.actor_id, label="actor id") if args.actor_id else None,
            )
        )
        return True

    if args.command == "ledger-audit":
        tenant_id = _parse_uuid(args.tenant_id, label="tenant id") if args.tenant_id else None
        if not asyncio.run(ledger_audit(tenant_id=tenant_id)):
            sys.exit(1)
        return True

    if args.command == "issue-token":
        user_id = _parse_uuid(args.user_id, label="user id")
        tenant_id = _parse_uuid(args.tenant_id, label="tenant id") if args.tenant_id else None
        print(security.create_access_token(str(user_id), tenant_id=tenant_id, role=args.role))
        return True

    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
