"""
Expense resolution: base annual spend, life-phase multipliers and the
age-based category plan, inflated to a projected age.
"""
from typing import Dict, Optional

from currency_utils import DEFAULT_REPORTING_CURRENCY, to_reporting_currency
from models import AgeBasedExpensePlan, ExpensePhases


def get_expense_multiplier(age: int, phases: Optional[ExpensePhases]) -> float:
    """
    Spending multiplier for an age.

    Bands are checked in order working, active retirement, slower pace, later
    years; the first band containing the age wins. Ages outside every band get
    1.0.
    """
    if phases is None:
        return 1.0

    for phase in phases.ordered():
        if phase.contains(age):
            return phase.percentage / 100
    return 1.0


def get_monthly_expenses_for_age(age: int, plan: Optional[AgeBasedExpensePlan]) -> Optional[float]:
    """
    Monthly spend (today's money) from the age-based plan.

    Returns None when the plan is off, empty, or has no phase for the age.
    """
    if plan is None or not plan.enabled or not plan.phases:
        return None

    for phase in plan.phases:
        if phase.start_age <= age <= phase.end_age:
            return phase.monthly_total
    return None


def calculate_base_annual_expenses(scenario, profile,
                                   exchange_rates: Optional[Dict[str, float]] = None) -> float:
    """
    Annual expenses in today's money, in the reporting currency.

    Uses the profile's expense items when the scenario draws on them and any
    exist; otherwise the scenario's flat amount, then the profile default.
    """
    settings = profile.settings
    reporting_currency = settings.reporting_currency if settings else DEFAULT_REPORTING_CURRENCY
    if exchange_rates is None:
        exchange_rates = settings.exchange_rates if settings else {}

    if scenario.use_expenses_module and profile.expenses:
        return sum(
            to_reporting_currency(item.annual_amount, item.currency, reporting_currency, exchange_rates)
            for item in profile.expenses
        )

    if scenario.annual_expenses:
        return scenario.annual_expenses
    if settings is not None and settings.profile.annual_expenses:
        return settings.profile.annual_expenses
    return 0.0


def resolve_expenses_for_age(age: int,
                             base_annual: float,
                             inflation_rate: float,
                             years_from_now: int,
                             phases: Optional[ExpensePhases],
                             plan: Optional[AgeBasedExpensePlan] = None) -> float:
    """
    Inflated annual expenses for an age.

    The age-based plan takes precedence when it covers the age, otherwise the
    base amount is scaled by the phase multiplier.
    """
    inflation_factor = (1 + inflation_rate / 100) ** years_from_now

    monthly = get_monthly_expenses_for_age(age, plan)
    if monthly is not None:
        return monthly * 12 * inflation_factor

    return base_annual * inflation_factor * get_expense_multiplier(age, phases)
