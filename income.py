"""
Income aggregation: recurring sources active at an age, plus dividend and
interest income thrown off by investible assets.
"""
from typing import Dict, List

from currency_utils import DEFAULT_REPORTING_CURRENCY, calculate_asset_value, to_reporting_currency
from models import IncomeSource


def is_source_active(source: IncomeSource, age: int) -> bool:
    """A source is active when start_age <= age <= end_age; None leaves a side open"""
    if source.start_age is not None and age < source.start_age:
        return False
    if source.end_age is not None and age > source.end_age:
        return False
    return True


def _escalation_factor(source: IncomeSource, inflation_rate: float, years_from_now: int) -> float:
    if years_from_now <= 0:
        return 1.0
    if source.is_annuity and source.escalation_rate is not None:
        return (1 + source.escalation_rate / 100) ** years_from_now
    if source.is_inflation_adjusted:
        return (1 + inflation_rate / 100) ** years_from_now
    return 1.0


def calculate_income_at_age(age: int,
                            sources: List[IncomeSource],
                            exchange_rates: Dict[str, float],
                            inflation_rate: float,
                            years_from_now: int,
                            reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> Dict[str, float]:
    """
    Annual income from all sources active at an age.

    Annuities escalate at their own escalation rate, other inflation-adjusted
    sources at the scenario inflation rate, fixed sources not at all.

    Args:
        age: Age being projected
        sources: Income sources
        exchange_rates: Rates into the reporting currency
        inflation_rate: Scenario inflation (%)
        years_from_now: Years since the start of the projection
        reporting_currency: Reporting currency

    Returns:
        {'total_income': float, 'taxable_income': float}, both annual
    """
    total_income = 0.0
    taxable_income = 0.0

    for source in sources:
        if not is_source_active(source, age):
            continue

        monthly = to_reporting_currency(source.monthly_amount, source.currency,
                                        reporting_currency, exchange_rates)
        annual = monthly * _escalation_factor(source, inflation_rate, years_from_now) * 12

        total_income += annual
        if source.is_taxable:
            taxable_income += annual

    return {'total_income': total_income, 'taxable_income': taxable_income}


def calculate_dividend_income_from_assets(assets: List,
                                          exchange_rates: Dict[str, float],
                                          reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> float:
    """Annual dividends from investible assets. Yields are already net of withholding tax."""
    return sum(
        calculate_asset_value(asset, exchange_rates, reporting_currency) * (asset.dividend_yield / 100)
        for asset in assets
        if asset.is_investible and asset.dividend_yield > 0
    )


def calculate_interest_income_from_assets(assets: List,
                                          exchange_rates: Dict[str, float],
                                          marginal_rate: float,
                                          reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> Dict[str, float]:
    """
    Annual interest from investible assets, taxed at the marginal rate.

    Returns:
        {'gross': float, 'net': float, 'tax': float}
    """
    gross = sum(
        calculate_asset_value(asset, exchange_rates, reporting_currency) * (asset.interest_yield / 100)
        for asset in assets
        if asset.is_investible and asset.interest_yield > 0
    )
    tax = gross * (marginal_rate / 100)
    return {'gross': gross, 'net': gross - tax, 'tax': tax}
