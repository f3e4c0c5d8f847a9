"""CLI for the BTMT operations toolkit - deploy and fund the token contracts."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from web3 import Web3

app = typer.Typer(
    name="btmt-ops",
    help="Deploy the BITMarkets token contracts and distribute allocations.",
    no_args_is_help=True,
)
console = Console()

_selected_env: str | None = None


def _version_callback(value: bool):
    if value:
        from btmt_ops import __version__
        console.print(f"btmt-ops {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@app.callback()
def main(
    env: str = typer.Option(
        None,
        "--env",
        "-e",
        help="Network profile: development, testing or production (default)",
        envvar="NODE_ENV",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Deploy the BITMarkets token contracts and distribute allocations."""
    global _selected_env
    _selected_env = env
    _configure_logging(verbose)


# ------------------------------------------------------------------
# Shared setup
# ------------------------------------------------------------------


def _settings():
    from btmt_ops.config import load_settings

    return load_settings(_selected_env)


def _connect(settings):
    """Open a provider for the selected profile."""
    from btmt_ops.chain.networks import get_network
    from btmt_ops.chain.provider import ChainProvider

    return ChainProvider.connect(get_network(settings.environment), settings)


def _fee_fetcher(provider):
    from btmt_ops.chain.gas import make_fee_fetcher

    return make_fee_fetcher(provider.network, provider.w3)


def _signers(settings):
    from btmt_ops.chain.provider import Signers

    return Signers.from_settings(settings)


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[red]{escape(str(exc))}[/red]")
    return typer.Exit(1)


# ------------------------------------------------------------------
# deploy
# ------------------------------------------------------------------


@app.command()
def deploy(
    params: Path = typer.Option(
        None, "--params", "-p", help="YAML file overriding deployment parameters",
        exists=True, dir_okay=False,
    ),
):
    """Deploy token, allocations and private sale contracts and wire permissions."""
    from btmt_ops.config import load_deploy_params
    from btmt_ops.tasks.deploy import Deployer

    try:
        settings = _settings()
        deploy_params = load_deploy_params(settings.environment, params)
        provider = _connect(settings)
        deployer = Deployer(
            provider=provider,
            signers=_signers(settings),
            params=deploy_params,
            fetch_fees=_fee_fetcher(provider),
            artifacts_dir=settings.artifacts_dir,
            announce=console.print,
        )
        result = deployer.run()
    except Exception as e:
        raise _fail(e)

    console.print(Panel(
        "\n".join(result.env_lines())
        + f"\n\n[dim]{len(result.steps)} steps completed on {provider.network.name}.[/dim]",
        title="Deployment Complete",
    ))


# ------------------------------------------------------------------
# allocate
# ------------------------------------------------------------------


@app.command()
def allocate(
    cohort: str = typer.Option("all", "--cohort", "-c", help="Cohort to fund: team, sales or all"),
    limit: int = typer.Option(None, "--limit", "-n", min=1, help="Max wallets per cohort"),
    resume: bool = typer.Option(
        False, "--resume", help="Skip as many wallets as the ledger already holds"
    ),
):
    """Allocate to team and sales wallets, recording each transaction in the ledger."""
    from btmt_ops.chain.artifacts import ALLOCATIONS, load_artifact
    from btmt_ops.chain.gas import FeeCache
    from btmt_ops.tasks.allocate import FEE_REFRESH_EVERY, Allocator, get_cohorts

    try:
        cohorts = get_cohorts(cohort)
        settings = _settings()
        provider = _connect(settings)
        allocations = provider.attach(
            load_artifact(settings.artifacts_dir, ALLOCATIONS),
            settings.require_allocations_address(),
        )
        allocator = Allocator(
            allocations=allocations,
            admin=_signers(settings).allocations_admin,
            fee_cache=FeeCache(_fee_fetcher(provider), refresh_every=FEE_REFRESH_EVERY),
            ledger_dir=settings.ledger_dir,
        )
        summaries = allocator.run(cohorts, limit=limit, resume=resume)
    except Exception as e:
        raise _fail(e)

    table = Table(title="Allocations")
    table.add_column("Cohort", style="cyan")
    table.add_column("Wallets", justify="right")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_column("Tokens", justify="right")
    for s in summaries:
        table.add_row(s.cohort, str(s.allocated), str(s.skipped), f"{s.total_amount:,}")
    console.print(table)


# ------------------------------------------------------------------
# ledger
# ------------------------------------------------------------------


@app.command()
def ledger(
    cohort: str = typer.Option("all", "--cohort", "-c", help="Cohort ledger: team, sales or all"),
    rows: int = typer.Option(10, "--rows", "-r", min=0, help="Show the last N rows (0 = totals only)"),
):
    """Show allocation ledger rows and totals (private keys are not displayed)."""
    from btmt_ops.ledger import ledger_for_cohort
    from btmt_ops.tasks.allocate import get_cohorts

    try:
        cohorts = get_cohorts(cohort)
        settings = _settings()
    except Exception as e:
        raise _fail(e)

    for c in cohorts:
        book = ledger_for_cohort(settings.ledger_dir, c.name)
        try:
            records = book.records()
        except ValueError as e:
            raise _fail(e)
        if not records:
            console.print(f"[yellow]{c.name}:[/yellow] no rows in {book.path}")
            continue

        if rows > 0:
            table = Table(title=f"{c.name} ledger ({book.path})")
            table.add_column("#", justify="right", style="dim")
            table.add_column("Address", style="cyan")
            table.add_column("Amount", justify="right")
            table.add_column("Tx hash")
            table.add_column("Nonce", justify="right")
            offset = max(0, len(records) - rows)
            for i, r in enumerate(records[offset:], start=offset + 1):
                table.add_row(str(i), r.address, f"{r.amount:,}", r.tx_hash, str(r.nonce))
            console.print(table)

        total = sum(r.amount for r in records)
        console.print(
            f"[bold]{c.name}:[/bold] {len(records)} of {c.size} wallets, "
            f"{total:,} of {c.total():,} tokens"
        )


# ------------------------------------------------------------------
# gas
# ------------------------------------------------------------------


@app.command()
def gas():
    """Show the fee data the tasks would use right now."""
    try:
        settings = _settings()
        provider = _connect(settings)
        fees = _fee_fetcher(provider)()
    except Exception as e:
        raise _fail(e)

    console.print(Panel(
        f"Max fee per gas: [cyan]{Web3.from_wei(fees.max_fee_per_gas, 'gwei')}[/cyan] gwei\n"
        f"Max priority fee per gas: [cyan]{Web3.from_wei(fees.max_priority_fee_per_gas, 'gwei')}[/cyan] gwei",
        title=f"Fees on {provider.network.name}",
    ))


# ------------------------------------------------------------------
# audit
# ------------------------------------------------------------------


@app.command()
def audit(
    cohort: str = typer.Option("all", "--cohort", "-c", help="Cohort ledger: team, sales or all"),
):
    """Compare ledger amounts with on-chain vesting wallet balances (read-only).

    Balances shrink once beneficiaries withdraw vested tokens, so the audit
    only holds until the first withdrawal after the cliff.
    """
    from btmt_ops.chain.artifacts import ALLOCATIONS, TOKEN, load_artifact
    from btmt_ops.ledger import ledger_for_cohort
    from btmt_ops.tasks.allocate import get_cohorts
    from btmt_ops.tasks.audit import audit_ledger

    try:
        cohorts = get_cohorts(cohort)
        settings = _settings()
        provider = _connect(settings)
        allocations = provider.attach(
            load_artifact(settings.artifacts_dir, ALLOCATIONS),
            settings.require_allocations_address(),
        )
        token = provider.attach(
            load_artifact(settings.artifacts_dir, TOKEN), allocations.call("token")
        )
        reports = [
            audit_ledger(ledger_for_cohort(settings.ledger_dir, c.name), allocations, token)
            for c in cohorts
        ]
    except Exception as e:
        raise _fail(e)

    table = Table(title="Ledger Audit")
    table.add_column("Ledger", style="cyan")
    table.add_column("Rows", justify="right")
    table.add_column("Expected", justify="right")
    table.add_column("On-chain", justify="right")
    table.add_column("Status")
    for r in reports:
        table.add_row(
            r.ledger,
            str(r.rows),
            f"{Web3.from_wei(r.expected_total, 'ether'):,}",
            f"{Web3.from_wei(r.onchain_total, 'ether'):,}",
            "[green]OK[/green]" if r.ok else f"[red]{len(r.mismatches)} mismatches[/red]",
        )
    console.print(table)

    for r in reports:
        for m in r.mismatches:
            console.print(
                f"[red]{m.address}[/red]: expected {Web3.from_wei(m.expected, 'ether')}, "
                f"found {Web3.from_wei(m.actual, 'ether')}"
            )

    if not all(r.ok for r in reports):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
