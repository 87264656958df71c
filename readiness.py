"""
Retirement readiness check.
A lighter alternative to the full projection: inflates today's expenses and
income to the middle of each retirement phase and asks how large a portfolio
the safe withdrawal rate needs to fund the gap.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from currency_utils import calculate_investible_assets, to_reporting_currency
from income import (
    calculate_dividend_income_from_assets,
    calculate_interest_income_from_assets,
    is_source_active,
)
from models import Profile
from tax import calculate_income_tax, marginal_tax_rate
from withdrawal import allocate_withdrawal, calculate_account_type_weights, calculate_initial_gain_ratio

logger = logging.getLogger(__name__)


@dataclass
class PhaseRequirement:
    """Funding requirement for one retirement phase"""
    name: str
    age_start: int
    age_end: Optional[int]
    percentage: float
    mid_age: float
    inflation_factor: float
    expenses_today: float
    expenses: float
    income: float
    withdrawal_needed: float
    gross_withdrawal: float
    portfolio_required: float
    has_surplus: bool


@dataclass
class ReadinessSummary:
    investible_assets: float = 0.0
    annual_expenses: float = 0.0
    retirement_income: float = 0.0
    retirement_income_tax: float = 0.0
    dividend_income: float = 0.0
    interest_income: float = 0.0
    asset_income: float = 0.0
    total_retirement_income: float = 0.0
    phases: List[PhaseRequirement] = field(default_factory=list)
    is_ready: bool = False
    gap: float = 0.0
    surplus: float = 0.0
    years_to_retirement: int = 0
    safe_withdrawal: float = 0.0
    conservative_withdrawal: float = 0.0
    current_age: int = 0
    retirement_age: int = 65
    life_expectancy: int = 90
    inflation_rate: float = 4.5


def calculate_retirement_readiness(profile: Optional[Profile]) -> ReadinessSummary:
    """
    Summarise whether current investible assets cover retirement.

    Args:
        profile: Profile with assets, income, expenses and settings

    Returns:
        ReadinessSummary; the default (not ready) summary when settings are missing
    """
    if profile is None or profile.settings is None:
        logger.warning("Readiness requested without profile settings")
        return ReadinessSummary()

    settings = profile.settings
    personal = settings.profile
    tax_config = settings.tax_config
    rates = settings.exchange_rates
    currency = settings.reporting_currency
    assets = profile.assets
    inflation_rate = settings.inflation
    current_age = personal.age
    retirement_age = personal.retirement_age

    investible_assets = calculate_investible_assets(assets, rates, currency)

    if profile.expenses:
        annual_expenses = sum(
            to_reporting_currency(item.annual_amount, item.currency, currency, rates)
            for item in profile.expenses
        )
    else:
        annual_expenses = personal.annual_expenses or 0.0

    retirement_income = 0.0
    taxable_retirement_income = 0.0
    for source in profile.income:
        if not is_source_active(source, retirement_age):
            continue
        annual = to_reporting_currency(source.monthly_amount, source.currency, currency, rates) * 12
        retirement_income += annual
        if source.is_taxable:
            taxable_retirement_income += annual

    retirement_income_tax = calculate_income_tax(taxable_retirement_income, retirement_age, tax_config).net_tax

    dividend_income = calculate_dividend_income_from_assets(assets, rates, currency)
    gross_interest = calculate_interest_income_from_assets(assets, rates, 0.0, currency)['gross']
    interest_rate = marginal_tax_rate(taxable_retirement_income + gross_interest, tax_config)
    interest_income = calculate_interest_income_from_assets(assets, rates, interest_rate, currency)['net']
    asset_income = dividend_income + interest_income

    total_retirement_income = retirement_income - retirement_income_tax + asset_income

    weights = calculate_account_type_weights(assets, rates, currency)
    gain_ratio = calculate_initial_gain_ratio(assets, rates, currency)
    withdrawal_rate = marginal_tax_rate(taxable_retirement_income, tax_config)
    safe_rate = settings.withdrawal_rates.safe

    phases = []
    for phase in settings.life_phases.retirement_phases():
        age_end = phase.age_end if phase.age_end is not None else phase.age_start + 10
        mid_age = (phase.age_start + age_end) / 2
        years_from_now = max(0.0, mid_age - current_age)
        inflation_factor = (1 + inflation_rate / 100) ** years_from_now

        expenses_today = annual_expenses * (phase.percentage / 100)
        phase_expenses = expenses_today * inflation_factor
        phase_income = total_retirement_income * inflation_factor
        withdrawal_needed = max(0.0, phase_expenses - phase_income)

        allocation = allocate_withdrawal(withdrawal_needed, weights, gain_ratio, withdrawal_rate,
                                         tax_config.cgt.inclusion_rate)
        gross_withdrawal = allocation.gross_withdrawal
        portfolio_required = gross_withdrawal / (safe_rate / 100) if gross_withdrawal > 0 else 0.0

        phases.append(PhaseRequirement(
            name=phase.name,
            age_start=phase.age_start,
            age_end=phase.age_end,
            percentage=phase.percentage,
            mid_age=mid_age,
            inflation_factor=inflation_factor,
            expenses_today=expenses_today,
            expenses=phase_expenses,
            income=phase_income,
            withdrawal_needed=withdrawal_needed,
            gross_withdrawal=gross_withdrawal,
            portfolio_required=portfolio_required,
            has_surplus=phase_income >= phase_expenses,
        ))

    max_required = max([phase.portfolio_required for phase in phases] + [0.0])
    is_ready = investible_assets >= max_required
    gap = max_required - investible_assets

    return ReadinessSummary(
        investible_assets=investible_assets,
        annual_expenses=annual_expenses,
        retirement_income=retirement_income,
        retirement_income_tax=retirement_income_tax,
        dividend_income=dividend_income,
        interest_income=interest_income,
        asset_income=asset_income,
        total_retirement_income=total_retirement_income,
        phases=phases,
        is_ready=is_ready,
        gap=0.0 if is_ready else gap,
        surplus=-gap if is_ready else 0.0,
        years_to_retirement=max(0, retirement_age - current_age),
        safe_withdrawal=investible_assets * (safe_rate / 100),
        conservative_withdrawal=investible_assets * (settings.withdrawal_rates.conservative / 100),
        current_age=current_age,
        retirement_age=retirement_age,
        life_expectancy=personal.life_expectancy,
        inflation_rate=inflation_rate,
    )
