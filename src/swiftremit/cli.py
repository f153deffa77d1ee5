"""
SwiftRemit CLI: local host for the remittance escrow.

Commands:
    swiftremit init       Initialize the escrow (admin, asset, fee rate)
    swiftremit agent      Register, remove, and list payout agents
    swiftremit fee        Show or update the fee rate, withdraw fees
    swiftremit limit      Show or set the daily send limit
    swiftremit remit      Create, confirm, cancel, and inspect remittances
    swiftremit token      Mint and inspect local settlement-asset balances
    swiftremit custody    Check custody against outstanding claims
    swiftremit audit      View the event trail
"""

from __future__ import annotations

import fcntl
import functools
import json
import logging
import subprocess
import sys
import time
from contextlib import contextmanager
from decimal import InvalidOperation
from typing import Optional

import click
from click.core import ParameterSource
from eth_account import Account

from .audit import AuditTrail
from .auth import AuthorizationVerifier, Proof, normalize_address, sign_authorization
from .config import Settings
from .errors import SwiftRemitError
from .escrow import RemittanceEscrow
from .events import Event, EventTopic, FanOut
from .ledger import Remittance, RemittanceStatus
from .money import format_bps, format_usdc, usdc_to_minor
from .storage import SqliteStore, ensure_private_dir, ensure_private_file
from .transfer import LocalToken


CUSTODY_KEY = "host:custody"
ASSET_KEY = "host:asset"


# ── Host wiring ───────────────────────────────────────────────────

class _EchoSink:
    def emit(self, event: Event) -> None:
        click.echo(f"   event {event.topic.value}: {json.dumps(event.payload, sort_keys=True)}")


class Host:
    """Everything one CLI invocation needs: store, token, verifier, escrow."""

    def __init__(self, settings: Settings, show_events: bool = False):
        self.settings = settings
        ensure_private_dir(settings.home)
        self.store = SqliteStore(settings.db_path)
        self.verifier = AuthorizationVerifier(self.store)
        self.audit = AuditTrail(path=settings.audit_path, key_path=settings.audit_key_path)
        sinks = [self.audit, _EchoSink()] if show_events else [self.audit]
        self.events = FanOut(*sinks)
        self._lock_path = settings.home / ".host.lock"
        ensure_private_file(self._lock_path)

    @property
    def custody(self) -> str:
        custody = self.store.get(CUSTODY_KEY)
        if custody is None:
            custody = normalize_address(self.settings.custody_address or Account.create().address)
            self.store.set(CUSTODY_KEY, custody)
        return custody

    def token(self, asset: Optional[str] = None) -> LocalToken:
        asset = asset or self.store.get(ASSET_KEY)
        if asset is None:
            raise click.ClickException("Escrow is not initialized; run `swiftremit init` first")
        return LocalToken(self.store, asset)

    def escrow(self, asset: Optional[str] = None) -> RemittanceEscrow:
        return RemittanceEscrow(
            store=self.store,
            transfer=self.token(asset),
            custody=self.custody,
            events=self.events,
        )

    @contextmanager
    def serialized(self):
        """Admit one mutating call at a time across processes."""
        with open(self._lock_path, "r+") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

    def prove(self, private_key: str, operation: str, args: dict) -> Proof:
        auth = sign_authorization(private_key, operation, args)
        return self.verifier.verify(auth, operation, args)


def _resolve_private_key(key_input: str) -> str:
    candidate = key_input.strip()
    if candidate.startswith("op://"):
        result = subprocess.run(
            ["op", "read", candidate],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            raise click.ClickException(
                f"Failed to read key from 1Password reference: {result.stderr.strip()}"
            )
        candidate = result.stdout.strip()

    if candidate.startswith("0x"):
        candidate = candidate[2:]
    if len(candidate) != 64:
        raise click.ClickException("Private key must be a 32-byte hex string or valid op:// reference")
    try:
        int(candidate, 16)
    except ValueError:
        raise click.ClickException("Private key must be hex") from None
    return "0x" + candidate


def _key_options(f):
    @click.option("--key", prompt=True, hide_input=True,
                  help="Caller's private key hex or op:// reference")
    @click.option(
        "--unsafe-allow-key-arg",
        is_flag=True,
        default=False,
        help="Allow passing --key via argv (unsafe; can leak in shell/process history).",
    )
    @functools.wraps(f)
    def wrapper(*args, key: str, unsafe_allow_key_arg: bool, **kwargs):
        ctx = click.get_current_context()
        if ctx.get_parameter_source("key") == ParameterSource.COMMANDLINE and not unsafe_allow_key_arg:
            click.echo(
                "❌ Refusing --key from argv. Re-run with prompt input or pass "
                "--unsafe-allow-key-arg to acknowledge the risk.",
                err=True,
            )
            sys.exit(1)
        return f(*args, key=_resolve_private_key(key), **kwargs)

    return wrapper


@contextmanager
def _reporting_errors():
    try:
        yield
    except SwiftRemitError as e:
        click.echo(f"❌ {type(e).__name__} (code {e.code}): {e}", err=True)
        sys.exit(1)


def _parse_amount(value: str) -> int:
    try:
        amount = usdc_to_minor(value)
    except (InvalidOperation, ValueError):
        raise click.BadParameter(f"Invalid amount: {value}") from None
    return amount


def _echo_remittance(r: Remittance) -> None:
    click.echo(f"   ID:        {r.remittance_id}")
    click.echo(f"   Status:    {r.status.value}")
    click.echo(f"   Sender:    {r.sender}")
    click.echo(f"   Agent:     {r.agent}")
    click.echo(f"   Principal: {format_usdc(r.principal)}")
    click.echo(f"   Fee:       {format_usdc(r.fee)}")
    click.echo(f"   Created:   {time.strftime('%Y-%m-%d %H:%M', time.localtime(r.created_at))}")


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version="0.1.0")
@click.option("--show-events", is_flag=True, default=False, help="Print emitted events")
@click.pass_context
def main(ctx: click.Context, show_events: bool):
    """SwiftRemit: peer-to-agent remittance escrow."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = Host(settings, show_events=show_events)


@main.command()
@click.option("--admin", required=True, help="Admin address")
@click.option("--asset", required=True, help="Settlement asset (token contract address)")
@click.option("--fee-bps", type=int, default=250, show_default=True, help="Platform fee in basis points")
@click.pass_obj
def init(host: Host, admin: str, asset: str, fee_bps: int):
    """Initialize the escrow. Succeeds exactly once."""
    with _reporting_errors(), host.serialized():
        asset = normalize_address(asset)
        config = host.escrow(asset).initialize(admin, asset, fee_bps)
        host.store.set(ASSET_KEY, config.settlement_asset)
    click.echo("✅ Escrow initialized")
    click.echo(f"   Admin:   {config.admin}")
    click.echo(f"   Asset:   {config.settlement_asset}")
    click.echo(f"   Fee:     {format_bps(config.fee_bps)} ({config.fee_bps} bps)")
    click.echo(f"   Custody: {host.custody}")


# ── Agents ────────────────────────────────────────────────────────

@main.group("agent")
def agent_group():
    """Payout agent registry."""
    pass


@agent_group.command("register")
@click.argument("agent")
@_key_options
@click.pass_obj
def agent_register(host: Host, agent: str, key: str):
    """Register AGENT (admin only)."""
    with _reporting_errors(), host.serialized():
        proof = host.prove(key, "register_agent", {"agent": agent})
        host.escrow().register_agent(proof, agent)
    click.echo(f"✅ Agent registered: {normalize_address(agent)}")


@agent_group.command("remove")
@click.argument("agent")
@_key_options
@click.pass_obj
def agent_remove(host: Host, agent: str, key: str):
    """Remove AGENT (admin only)."""
    with _reporting_errors(), host.serialized():
        proof = host.prove(key, "remove_agent", {"agent": agent})
        host.escrow().remove_agent(proof, agent)
    click.echo(f"✅ Agent removed: {normalize_address(agent)}")


@agent_group.command("list")
@click.pass_obj
def agent_list(host: Host):
    """List registered agents."""
    with _reporting_errors():
        agents = host.escrow().list_agents()
    if not agents:
        click.echo("No agents registered")
        return
    for agent in agents:
        click.echo(agent)


@agent_group.command("check")
@click.argument("agent")
@click.pass_obj
def agent_check(host: Host, agent: str):
    """Exit 0 if AGENT is registered, 1 otherwise."""
    with _reporting_errors():
        registered = host.escrow().is_agent_registered(agent)
    click.echo("registered" if registered else "not registered")
    if not registered:
        sys.exit(1)


# ── Fees ──────────────────────────────────────────────────────────

@main.group("fee")
def fee_group():
    """Platform fee rate and collected fees."""
    pass


@fee_group.command("show")
@click.pass_obj
def fee_show(host: Host):
    """Show the fee rate and accumulated fees."""
    with _reporting_errors():
        escrow = host.escrow()
        fee_bps = escrow.get_platform_fee_bps()
        accumulated = escrow.get_accumulated_fees()
    click.echo(f"Fee rate:    {format_bps(fee_bps)} ({fee_bps} bps)")
    click.echo(f"Accumulated: {format_usdc(accumulated)}")


@fee_group.command("update")
@click.argument("fee_bps", type=int)
@_key_options
@click.pass_obj
def fee_update(host: Host, fee_bps: int, key: str):
    """Set the platform fee to FEE_BPS (admin only)."""
    with _reporting_errors(), host.serialized():
        proof = host.prove(key, "update_fee", {"fee_bps": fee_bps})
        host.escrow().update_fee(proof, fee_bps)
    click.echo(f"✅ Fee updated to {format_bps(fee_bps)} ({fee_bps} bps)")


@fee_group.command("withdraw")
@click.option("--to", "recipient", required=True, help="Recipient address")
@_key_options
@click.pass_obj
def fee_withdraw(host: Host, recipient: str, key: str):
    """Withdraw all accumulated fees (admin only)."""
    with _reporting_errors(), host.serialized():
        proof = host.prove(key, "withdraw_fees", {"recipient": recipient})
        amount = host.escrow().withdraw_fees(proof, recipient)
    if amount == 0:
        click.echo("No fees to withdraw")
    else:
        click.echo(f"✅ Withdrew {format_usdc(amount)} to {normalize_address(recipient)}")


# ── Limits ────────────────────────────────────────────────────────

@main.group("limit")
def limit_group():
    """Per-sender daily send limit."""
    pass


@limit_group.command("show")
@click.pass_obj
def limit_show(host: Host):
    """Show the daily send limit."""
    with _reporting_errors():
        limit = host.escrow().get_daily_send_limit()
    click.echo(f"Daily send limit: {format_usdc(limit) if limit is not None else 'none'}")


@limit_group.command("set")
@click.argument("amount")
@_key_options
@click.pass_obj
def limit_set(host: Host, amount: str, key: str):
    """Set the daily send limit to AMOUNT USDC, or `none` to clear (admin only)."""
    limit = None if amount.strip().lower() == "none" else _parse_amount(amount)
    with _reporting_errors(), host.serialized():
        proof = host.prove(key, "set_daily_limit", {"limit": limit})
        host.escrow().set_daily_limit(proof, limit)
    click.echo(f"✅ Daily send limit: {format_usdc(limit) if limit is not None else 'none'}")


# ── Remittances ───────────────────────────────────────────────────

@main.group("remit")
def remit_group():
    """Remittance lifecycle."""
    pass


@remit_group.command("create")
@click.option("--agent", required=True, help="Payout agent address")
@click.option("--amount", required=True, help="Principal in USDC, e.g. 12.50")
@_key_options
@click.pass_obj
def remit_create(host: Host, agent: str, amount: str, key: str):
    """Escrow AMOUNT from the key's address for payout by AGENT."""
    principal = _parse_amount(amount)
    sender = Account.from_key(key).address
    with _reporting_errors(), host.serialized():
        args = {"sender": sender, "agent": agent, "principal": principal}
        proof = host.prove(key, "create_remittance", args)
        escrow = host.escrow()
        remittance_id = escrow.create_remittance(proof, sender, agent, principal)
        remittance = escrow.get_remittance(remittance_id)
    click.echo(f"✅ Remittance created: {remittance_id}")
    _echo_remittance(remittance)


@remit_group.command("confirm")
@click.argument("remittance_id", type=int)
@_key_options
@click.pass_obj
def remit_confirm(host: Host, remittance_id: int, key: str):
    """Confirm payout of REMITTANCE_ID (assigned agent only)."""
    with _reporting_errors(), host.serialized():
        proof = host.prove(key, "confirm_payout", {"remittance_id": remittance_id})
        remittance = host.escrow().confirm_payout(proof, remittance_id)
    click.echo(f"✅ Payout confirmed: {format_usdc(remittance.payout)} to {remittance.agent}")


@remit_group.command("cancel")
@click.argument("remittance_id", type=int)
@_key_options
@click.pass_obj
def remit_cancel(host: Host, remittance_id: int, key: str):
    """Cancel REMITTANCE_ID and refund the sender (sender only)."""
    with _reporting_errors(), host.serialized():
        proof = host.prove(key, "cancel_remittance", {"remittance_id": remittance_id})
        remittance = host.escrow().cancel_remittance(proof, remittance_id)
    click.echo(f"✅ Remittance cancelled: refunded {format_usdc(remittance.principal)} to {remittance.sender}")


@remit_group.command("show")
@click.argument("remittance_id", type=int)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print as JSON")
@click.pass_obj
def remit_show(host: Host, remittance_id: int, as_json: bool):
    """Show one remittance."""
    with _reporting_errors():
        remittance = host.escrow().get_remittance(remittance_id)
    if as_json:
        click.echo(json.dumps(remittance.to_dict(), indent=2))
    else:
        _echo_remittance(remittance)


@remit_group.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in RemittanceStatus], case_sensitive=False),
    default=None,
    help="Only show remittances in this status",
)
@click.pass_obj
def remit_list(host: Host, status: Optional[str]):
    """List remittances in id order."""
    with _reporting_errors():
        remittances = host.escrow().list_remittances(RemittanceStatus(status.lower()) if status else None)
    if not remittances:
        click.echo("No remittances")
        return
    for r in remittances:
        click.echo(
            f"{r.remittance_id:>6}  {r.status.value:<9}  {format_usdc(r.principal):>24}  "
            f"{r.sender} -> {r.agent}"
        )


# ── Token (local settlement asset) ────────────────────────────────

@main.group("token")
def token_group():
    """Local settlement-asset balances."""
    pass


@token_group.command("mint")
@click.option("--to", "holder", required=True, help="Recipient address")
@click.option("--amount", required=True, help="Amount in USDC")
@click.pass_obj
def token_mint(host: Host, holder: str, amount: str):
    """Mint local test balance."""
    minor = _parse_amount(amount)
    if minor <= 0:
        raise click.BadParameter(f"Amount must be positive: {amount}")
    with _reporting_errors(), host.serialized():
        holder = normalize_address(holder)
        balance = host.token().mint(holder, minor)
    click.echo(f"✅ {holder} balance: {format_usdc(balance)}")


@token_group.command("balance")
@click.argument("holder")
@click.pass_obj
def token_balance(host: Host, holder: str):
    """Show HOLDER's balance."""
    with _reporting_errors():
        balance = host.token().balance(normalize_address(holder))
    click.echo(format_usdc(balance))


# ── Reports ───────────────────────────────────────────────────────

@main.command()
@click.pass_obj
def custody(host: Host):
    """Check custody balance against pending principal and fees."""
    with _reporting_errors():
        report = host.escrow().custody_report()
    click.echo(f"Custody:           {host.custody}")
    click.echo(f"Balance:           {format_usdc(report.custody_balance)}")
    click.echo(f"Pending principal: {format_usdc(report.pending_principal)}")
    click.echo(f"Accumulated fees:  {format_usdc(report.accumulated_fees)}")
    if report.is_solvent:
        click.echo("✅ Custody covers all claims")
    else:
        click.echo(f"❌ Custody short by {format_usdc(-report.surplus)}", err=True)
        sys.exit(1)


@main.command()
@click.option(
    "--topic",
    type=click.Choice([t.value for t in EventTopic]),
    default=None,
    help="Only show events with this topic",
)
@click.option("--remittance-id", type=int, default=None, help="Only show events for this remittance")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--summary", is_flag=True, default=False, help="Show counts by topic")
@click.pass_obj
def audit(host: Host, topic: Optional[str], remittance_id: Optional[int], limit: int, summary: bool):
    """View the tamper-evident event trail."""
    try:
        if summary:
            click.echo(json.dumps(host.audit.summary(), indent=2))
            return
        records = host.audit.read_events(
            topic=EventTopic(topic) if topic else None,
            remittance_id=remittance_id,
            limit=limit,
        )
    except RuntimeError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not records:
        click.echo("No events")
        return
    for r in records:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(r.timestamp))
        click.echo(f"{stamp}  {r.topic:<10}  {json.dumps(r.payload, sort_keys=True)}")


if __name__ == "__main__":
    main()
