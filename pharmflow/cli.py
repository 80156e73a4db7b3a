"""
pharmflow CLI - operator utilities built with Click.

Read-only calculators over the rule engines; nothing here touches storage.
"""

from datetime import datetime

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pharmflow import __version__
from pharmflow.claims.pricing import calculate_cash_price, compare_pricing_options
from pharmflow.claims.refill import DEFAULT_REFILL_PERCENTAGE, calculate_eligible_refill_date
from pharmflow.claims.reject_codes import get_reject_code_info, get_reject_code_resolution
from pharmflow.compliance.dea import generate_test_dea_number, is_valid_dea_number
from pharmflow.compliance.dispensing import validate_cs_dispensing
from pharmflow.compliance.inventory import (
    BiennialStatus,
    VarianceSeverity,
    calculate_variance,
    validate_biennial_inventory_timing,
)
from pharmflow.core.exceptions import PharmFlowError
from pharmflow.types import DeaSchedule
from pharmflow.workflow.states import WorkflowState, get_valid_next_states

console = Console()

_DATE = click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"])

_SEVERITY_STYLE = {
    VarianceSeverity.NONE: "green",
    VarianceSeverity.MINOR: "yellow",
    VarianceSeverity.SIGNIFICANT: "dark_orange",
    VarianceSeverity.CRITICAL: "bold red",
}

_BIENNIAL_STYLE = {
    BiennialStatus.CURRENT: "green",
    BiennialStatus.DUE_SOON: "yellow",
    BiennialStatus.OVERDUE: "bold red",
}


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


@click.group(cls=OrderedGroup)
@click.version_option(version=__version__, prog_name="pharmflow")
def cli():
    """
    pharmflow - Pharmacy dispensing core utilities.

    \b
    Compliance:
        dea              Check or generate DEA registration numbers
        cs-check         Validate a controlled-substance fill
        variance         Compare a physical count to the ledger
        biennial         Check the biennial inventory cycle
    \b
    Claims:
        reject-code      Look up NCPDP reject code guidance
        refill-date      Compute refill eligibility
        price            Cash price and insurance comparison
    \b
    Workflow:
        transitions      List valid next workflow states
    """


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    raise SystemExit(1)


# ============================================================================
# pharmflow dea
# ============================================================================


@cli.group()
def dea():
    """DEA registration number utilities."""


@dea.command("check")
@click.argument("number")
def dea_check(number: str):
    """
    Validate the format and checksum of a DEA number.

    \b
    Example:
        pharmflow dea check AB1234563
    """
    if is_valid_dea_number(number):
        console.print(f"[green]VALID[/green] {escape(number.upper())}")
        return
    console.print(f"[red]INVALID[/red] {escape(number)}")
    raise SystemExit(1)


@dea.command("generate")
@click.option("--type", "practitioner_type", default="A", show_default=True, help="Registrant type letter")
@click.option("--last-name", default="Smith", show_default=True, help="Registrant last name")
@click.option("--count", default=1, show_default=True, type=click.IntRange(1, 100))
def dea_generate(practitioner_type: str, last_name: str, count: int):
    """Generate checksum-valid DEA numbers for test fixtures."""
    if not last_name.strip():
        _fail("last name must not be empty")
    for _ in range(count):
        click.echo(generate_test_dea_number(practitioner_type, last_name))


# ============================================================================
# pharmflow cs-check
# ============================================================================


@cli.command("cs-check")
@click.argument("schedule")
@click.argument("written", type=_DATE)
@click.option("--refill", "refill_number", default=0, show_default=True, type=click.IntRange(0))
@click.option("--partial", is_flag=True, help="Fill dispenses less than the written quantity")
@click.option("--dea", "prescriber_dea", default=None, help="Prescriber DEA number")
def cs_check(
    schedule: str, written: datetime, refill_number: int, partial: bool, prescriber_dea: str | None
):
    """
    Validate a controlled-substance fill against DEA schedule rules.

    \b
    Example:
        pharmflow cs-check II 2026-01-05 --dea AB1234563
    """
    try:
        result = validate_cs_dispensing(
            DeaSchedule.parse(schedule), written, refill_number, partial, prescriber_dea
        )
    except PharmFlowError as e:
        _fail(str(e))

    status = "[green]OK[/green]" if result.valid else "[bold red]BLOCKED[/bold red]"
    console.print(f"{status} {result.rules.schedule.label}, written {result.days_since_written} days ago")
    for error in result.errors:
        console.print(f"  [red]error[/red]   {escape(error)}")
    for warning in result.warnings:
        console.print(f"  [yellow]warning[/yellow] {escape(warning)}")
    if not result.valid:
        raise SystemExit(1)


# ============================================================================
# pharmflow variance / biennial
# ============================================================================


@cli.command()
@click.argument("physical", type=float)
@click.argument("system", type=float)
def variance(physical: float, system: float):
    """
    Compare a PHYSICAL count to the SYSTEM (ledger) count.

    \b
    Example:
        pharmflow variance 90 100
    """
    try:
        result = calculate_variance(physical, system)
    except PharmFlowError as e:
        _fail(str(e))

    style = _SEVERITY_STYLE[result.severity]
    console.print(
        f"Variance: {result.variance:g} ({result.variance_percent:.2f}%) "
        f"[{style}]{result.severity.value}[/{style}]"
    )
    if result.requires_investigation:
        console.print("Investigation required")
    if result.requires_dea_report:
        console.print("[bold red]DEA Form 106 report required[/bold red]")


@cli.command()
@click.argument("last_inventory", type=_DATE)
def biennial(last_inventory: datetime):
    """Check the biennial inventory cycle from the LAST_INVENTORY date."""
    result = validate_biennial_inventory_timing(last_inventory)
    style = _BIENNIAL_STYLE[result.status]
    console.print(
        f"[{style}]{result.status.value}[/{style}]: due {result.due_date.date().isoformat()} "
        f"({result.days_until_due} days left, {result.days_since_last_inventory} since last)"
    )


# ============================================================================
# pharmflow reject-code / refill-date / price
# ============================================================================


@cli.command("reject-code")
@click.argument("code")
def reject_code(code: str):
    """
    Show causes and resolution steps for an NCPDP reject code.

    \b
    Example:
        pharmflow reject-code 79
    """
    resolution = get_reject_code_resolution(code)
    if resolution is None:
        _fail(f"Unknown reject code {code!r}: escalate to the PBM help desk")

    info = get_reject_code_info(code)
    console.print(f"[bold]{escape(resolution.code)}[/bold] {escape(resolution.description)}")
    if info is not None:
        console.print(f"Category: {info.category.value}. Action: {escape(info.action_required)}")

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Resolution step")
    for index, step in enumerate(resolution.resolution_steps, start=1):
        table.add_row(str(index), escape(step))
    console.print(table)

    if resolution.can_override:
        codes = ", ".join(o.code for o in resolution.override_codes)
        console.print(f"Override codes: {escape(codes)}")
    if resolution.requires_pharmacist:
        console.print("Requires pharmacist")


@cli.command("refill-date")
@click.argument("last_fill", type=_DATE)
@click.argument("days_supply", type=click.IntRange(1))
@click.option(
    "--percentage",
    default=DEFAULT_REFILL_PERCENTAGE,
    show_default=True,
    type=click.FloatRange(0, 100, min_open=True),
    help="Percent of the days supply that must elapse",
)
def refill_date(last_fill: datetime, days_supply: int, percentage: float):
    """Compute when a refill becomes payable."""
    info = calculate_eligible_refill_date(last_fill, days_supply, percentage)
    when = info.eligible_date.date().isoformat()
    if info.is_eligible:
        console.print(f"[green]Eligible now[/green] (since {when})")
    else:
        console.print(f"Eligible on {when}, in {info.days_until_eligible} days")


@cli.command()
@click.argument("acquisition_cost", type=click.FloatRange(0))
@click.argument("dispensing_fee", type=click.FloatRange(0))
@click.option("--markup", default=20.0, show_default=True, type=click.FloatRange(0))
@click.option("--minimum", "minimum_price", default=None, type=click.FloatRange(0))
@click.option("--insurance-pay", default=None, type=click.FloatRange(0), help="Patient pay under insurance")
def price(
    acquisition_cost: float,
    dispensing_fee: float,
    markup: float,
    minimum_price: float | None,
    insurance_pay: float | None,
):
    """
    Cash price for ACQUISITION_COST plus DISPENSING_FEE, optionally compared to insurance.

    \b
    Example:
        pharmflow price 10 5 --insurance-pay 25
    """
    calc = calculate_cash_price(acquisition_cost, dispensing_fee, markup, minimum_price)
    console.print(f"Cash price: ${calc.final_price:.2f}")
    if calc.minimum_applied:
        console.print(f"  minimum price applied (calculated ${calc.calculated_price:.2f})")

    if insurance_pay is not None:
        comparison = compare_pricing_options(insurance_pay, calc.final_price)
        console.print(escape(comparison.recommendation))


# ============================================================================
# pharmflow transitions
# ============================================================================


@cli.command()
@click.argument("state")
def transitions(state: str):
    """List the states a prescription in STATE may move to."""
    try:
        current = WorkflowState(state.strip().upper())
    except ValueError:
        _fail(f"Unknown workflow state: {state!r}")

    targets = sorted(get_valid_next_states(current), key=lambda s: s.value)
    if not targets:
        console.print(f"{current.display_name} is terminal")
        return
    for target in targets:
        suffix = " (pharmacist)" if target.requires_pharmacist else ""
        console.print(f"{target.value}{suffix}")


def main():
    cli()


if __name__ == "__main__":
    main()
