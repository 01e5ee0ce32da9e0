"""
Wallet Guard CLI — human confirmation in front of agent transfers.

Commands:
    awg init          Initialize config
    awg status        Show wallet guard status
    awg allowlist     Manage trusted addresses
    awg send          Request a guarded send
    awg confirm       Confirm the pending transaction
    awg freeze        Freeze the wallet (kill switch)
    awg unfreeze      Lift the kill switch
    awg config        Show or update config
    awg integrity     Sign or verify tracked files
    awg log           View the audit log
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from . import __version__
from .audit import Action
from .engine import Reason
from .errors import IntegrityError, WalletGuardError
from .executor import AwalExecutor
from .guard import WalletGuard, default_wallet_dir
from .money import format_amount
from .state import Identity, to_iso


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        click.echo(f"🛑 INTEGRITY FAILURE: {exc}", err=True)
        click.echo("   Refusing to act on data that may have been tampered with.", err=True)
        sys.exit(2)
    except WalletGuardError as exc:
        click.echo(f"❌ {exc}", err=True)
        sys.exit(1)


def _parse_sender(ctx, param, value: Optional[str]) -> Optional[Identity]:
    if value is None:
        return None
    try:
        return Identity.parse(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _guard(ctx: click.Context) -> WalletGuard:
    return ctx.obj["guard"]


sender_option = click.option(
    "--sender",
    callback=_parse_sender,
    default=None,
    help="Identity of the requester as platform:id (e.g. imessage:+15550100)",
)


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
@click.option(
    "--dir",
    "wallet_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Wallet directory (default: $AWG_DIR or ./.awg)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log guard decisions to stderr.")
@click.pass_context
def main(ctx: click.Context, wallet_dir: Optional[Path], verbose: bool):
    """Wallet Guard — human-confirmed transfers for agent wallets."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["guard"] = WalletGuard(wallet_dir or default_wallet_dir())


@main.command()
@click.pass_context
def init(ctx: click.Context):
    """Write the default config if none exists."""
    guard = _guard(ctx)
    with _handle_errors():
        created = guard.config_store.init()
    if created:
        click.echo(f"✅ Created config at {guard.config_store.path}")
    else:
        click.echo(f"Config already exists at {guard.config_store.path}")


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show wallet guard status."""
    with _handle_errors():
        report = _guard(ctx).get_status()

    frozen = f"🛑 YES — {report.frozen_reason}" if report.frozen else "✅ No"
    click.echo("Wallet Guard Status")
    click.echo("─" * 40)
    click.echo(f"Frozen:          {frozen}")
    click.echo(f"Daily spent:     {format_amount(report.daily_total_micros)}")
    click.echo(f"Daily limit:     {format_amount(report.daily_max_micros)}")
    click.echo(f"Daily remaining: {format_amount(report.daily_remaining_micros)}")
    if report.pending is None:
        click.echo("Pending tx:      No")
    else:
        p = report.pending
        click.echo(
            f"Pending tx:      {format_amount(p.amount_micros)} {p.token} → {p.to} "
            f"(expires {to_iso(p.expires_at)}, {p.attempts_remaining} attempt(s) left)"
        )


@main.group("allowlist")
def allowlist_group():
    """Manage trusted destination addresses."""
    pass


@allowlist_group.command("add")
@click.argument("address")
@click.option("--label", default="", help="Human-readable description")
@click.pass_context
def allowlist_add(ctx: click.Context, address: str, label: str):
    """Add a trusted address."""
    store = _guard(ctx).allowlist_store
    with _handle_errors():
        if not store.add(address, label):
            existing = store.load().find(address)
            shown = existing.label if existing else ""
            click.echo(f"⚠️  Address already in allowlist as \"{shown}\"")
            return
    click.echo(f"✅ Added {address} as \"{label}\"")


@allowlist_group.command("remove")
@click.argument("address")
@click.pass_context
def allowlist_remove(ctx: click.Context, address: str):
    """Remove a trusted address."""
    with _handle_errors():
        removed = _guard(ctx).allowlist_store.remove(address)
    if removed:
        click.echo(f"✅ Removed {address}")
    else:
        click.echo("⚠️  Address not found in allowlist")


@allowlist_group.command("list")
@click.pass_context
def allowlist_list(ctx: click.Context):
    """List trusted addresses."""
    with _handle_errors():
        allowlist = _guard(ctx).allowlist_store.load()
    if not allowlist.entries:
        click.echo("No addresses in allowlist.")
        return
    click.echo("Trusted Addresses:")
    click.echo("─" * 60)
    for entry in allowlist.entries:
        click.echo(f"  {entry.label or '(no label)'}")
        click.echo(f"  {entry.address}")
        click.echo(f"  Added: {entry.added_at}")
        click.echo("")


@main.command()
@click.argument("amount")
@click.argument("address")
@click.argument("token", default="USDC")
@sender_option
@click.pass_context
def send(ctx: click.Context, amount: str, address: str, token: str, sender: Optional[Identity]):
    """Request a guarded send of AMOUNT to ADDRESS."""
    with _handle_errors():
        try:
            outcome = _guard(ctx).request_send(address, amount, token=token, sender=sender)
        except ValueError as exc:
            click.echo(f"❌ {exc}", err=True)
            sys.exit(1)

    if outcome.needs_confirmation:
        click.echo(f"🔐 {outcome.message}")
        return
    icon = "🛑" if outcome.frozen or outcome.reason == Reason.WALLET_FROZEN else "🚫"
    click.echo(f"{icon} {outcome.message}")
    sys.exit(1)


@main.command()
@click.argument("code")
@sender_option
@click.option("--no-execute", is_flag=True, help="Record the approval without running awal")
@click.pass_context
def confirm(ctx: click.Context, code: str, sender: Optional[Identity], no_execute: bool):
    """Confirm the pending transaction with CODE."""
    with _handle_errors():
        outcome = _guard(ctx).confirm_send(code, sender=sender)

    if not outcome.approved:
        click.echo(f"❌ {outcome.message}")
        sys.exit(1)

    click.echo(f"✅ {outcome.message}")
    if no_execute:
        return

    click.echo("\nExecuting via awal...")
    result = AwalExecutor().execute(outcome)
    if result.success:
        click.echo(result.output)
    else:
        click.echo(f"Transaction failed: {result.error}", err=True)
        sys.exit(1)


@main.command()
@click.argument("reason", default="manual")
@click.pass_context
def freeze(ctx: click.Context, reason: str):
    """Freeze the wallet; no transfer can be requested until unfrozen."""
    with _handle_errors():
        _guard(ctx).freeze(reason)
    click.echo("🛑 Wallet FROZEN.")


@main.command()
@click.pass_context
def unfreeze(ctx: click.Context):
    """Lift the kill switch."""
    with _handle_errors():
        _guard(ctx).unfreeze()
    click.echo("✅ Wallet unfrozen.")


@main.group("config", invoke_without_command=True)
@click.pass_context
def config_group(ctx: click.Context):
    """Show config, or update it with `config set`."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(config_show)


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context):
    """Print the merged config."""
    with _handle_errors():
        doc = _guard(ctx).config_store.load_document()
    click.echo(json.dumps(doc, indent=2))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str):
    """Set a dotted KEY (e.g. limits.dailyMax) to VALUE."""
    with _handle_errors():
        coerced = _guard(ctx).config_store.set_value(key, value)
    click.echo(f"✅ Set {key} = {coerced}")


@main.group("integrity")
def integrity_group():
    """Sign or verify tracked files (requires AWG_INTEGRITY_SECRET)."""
    pass


@integrity_group.command("sign")
@click.pass_context
def integrity_sign(ctx: click.Context):
    """Record fresh tags for every tracked file."""
    integrity = _guard(ctx).integrity
    if not integrity.enabled:
        click.echo("❌ AWG_INTEGRITY_SECRET is not set; integrity checking is disabled.", err=True)
        sys.exit(1)
    for name, tag in integrity.sign_all().items():
        click.echo(f"  {name}: {'signed' if tag else 'absent'}")


@integrity_group.command("verify")
@click.pass_context
def integrity_verify(ctx: click.Context):
    """Check every tracked file against its tag."""
    integrity = _guard(ctx).integrity
    if not integrity.enabled:
        click.echo("⚠️  AWG_INTEGRITY_SECRET is not set; integrity checking is disabled.")
        return
    results = integrity.verify_all()
    for name, ok in results.items():
        click.echo(f"  {'✅' if ok else '❌'} {name}")
    if not all(results.values()):
        sys.exit(2)


@main.command()
@click.option("--limit", type=int, default=20, help="Number of entries")
@click.option(
    "--action",
    type=click.Choice([a.value for a in Action]),
    default=None,
    help="Only show one kind of entry",
)
@click.pass_context
def log(ctx: click.Context, limit: int, action: Optional[str]):
    """View the audit log."""
    entries = _guard(ctx).audit.read(limit=limit, action=Action(action) if action else None)
    if not entries:
        click.echo("No audit entries found.")
        return
    for entry in entries:
        amount = f" ${entry.amount}" if entry.amount is not None else ""
        to = f" → {entry.to}" if entry.to else ""
        reason = f" ({entry.reason})" if entry.reason else ""
        click.echo(f"  {entry.timestamp} {entry.action}{amount}{to}{reason}")


if __name__ == "__main__":
    main()
