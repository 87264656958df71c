"""
Platform and advisor fee configuration, and the fee charged in one projected year.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from currency_utils import DEFAULT_REPORTING_CURRENCY, to_reporting_currency

logger = logging.getLogger(__name__)

FEE_TYPES = ['percentage', 'tiered-percentage', 'fixed']

_FREQUENCY_MULTIPLIER = {
    'monthly': 12,
    'quarterly': 4,
    'annual': 1,
}


@dataclass
class FeeTier:
    """Rate (%) charged on the portfolio slice up to the cumulative up_to limit (None = no limit)"""
    up_to: Optional[float]
    rate: float


@dataclass
class FeeStructure:
    type: str = 'percentage'
    rate: float = 0.0  # % p.a., 'percentage' only
    tiers: List[FeeTier] = field(default_factory=list)
    amount: float = 0.0  # 'fixed' only
    currency: Optional[str] = None
    frequency: str = 'monthly'

    def __post_init__(self):
        if self.type not in FEE_TYPES:
            raise ValueError(f"Unknown fee type '{self.type}', expected one of {FEE_TYPES}")
        if self.frequency not in _FREQUENCY_MULTIPLIER:
            raise ValueError(f"Unknown fee frequency '{self.frequency}'")


@dataclass
class Platform:
    id: str
    name: str = ''
    fee_structure: Optional[FeeStructure] = None


@dataclass
class AdvisorFee:
    enabled: bool = False
    type: str = 'percentage'  # 'percentage' or 'fixed'
    amount: float = 0.0  # % p.a. or fixed annual amount
    currency: Optional[str] = None


def _tiered_fee(portfolio_value: float, tiers: List[FeeTier]) -> float:
    fee = 0.0
    remaining = portfolio_value
    previous_limit = 0.0

    for tier in tiers:
        if tier.up_to is None:
            tier_amount = remaining
        else:
            tier_amount = min(remaining, tier.up_to - previous_limit)
            previous_limit = tier.up_to
        fee += tier_amount * (tier.rate / 100)
        remaining -= tier_amount
        if remaining <= 0:
            break

    return fee


def annualise_fixed_fee(fee_structure: FeeStructure) -> float:
    """Fixed platform fee per year in its own currency"""
    return fee_structure.amount * _FREQUENCY_MULTIPLIER[fee_structure.frequency]


def calculate_scenario_year_fees(portfolio_value: float, settings) -> Dict[str, float]:
    """
    Fees charged against the whole portfolio for one projected year.

    Percentage and tiered fees apply to the portfolio value as a whole, fixed
    fees are converted to the reporting currency. The total is capped at the
    portfolio value so fees alone never push it negative.

    Args:
        portfolio_value: Portfolio value in the reporting currency
        settings: Settings carrying platforms, advisor_fee, exchange rates

    Returns:
        Dict with platform_fees, platform_fee_rate (%), fixed_platform_fees,
        advisor_fee, total_fees, uncapped_total_fees and was_capped
    """
    if not portfolio_value or portfolio_value <= 0:
        return {
            'platform_fees': 0.0,
            'platform_fee_rate': 0.0,
            'fixed_platform_fees': 0.0,
            'advisor_fee': 0.0,
            'total_fees': 0.0,
            'uncapped_total_fees': 0.0,
            'was_capped': False,
        }

    reporting_currency = getattr(settings, 'reporting_currency', None) or DEFAULT_REPORTING_CURRENCY
    exchange_rates = getattr(settings, 'exchange_rates', None) or {}

    percentage_fees = 0.0
    fixed_platform_fees = 0.0

    for platform in getattr(settings, 'platforms', None) or []:
        fee_structure = platform.fee_structure
        if fee_structure is None:
            continue

        if fee_structure.type == 'percentage':
            percentage_fees += portfolio_value * (fee_structure.rate / 100)
        elif fee_structure.type == 'tiered-percentage':
            percentage_fees += _tiered_fee(portfolio_value, fee_structure.tiers)
        elif fee_structure.type == 'fixed':
            fixed_platform_fees += to_reporting_currency(
                annualise_fixed_fee(fee_structure),
                fee_structure.currency or reporting_currency,
                reporting_currency,
                exchange_rates,
            )

    advisor_fee_amount = 0.0
    advisor = getattr(settings, 'advisor_fee', None)
    if advisor is not None and advisor.enabled:
        if advisor.type == 'percentage':
            advisor_fee_amount = portfolio_value * (advisor.amount / 100)
        elif advisor.type == 'fixed':
            advisor_fee_amount = to_reporting_currency(
                advisor.amount, advisor.currency or reporting_currency,
                reporting_currency, exchange_rates)
        else:
            logger.warning(f"Ignoring advisor fee of unknown type '{advisor.type}'")

    platform_fees = percentage_fees + fixed_platform_fees
    total_fees = platform_fees + advisor_fee_amount
    capped_total = min(total_fees, portfolio_value)

    return {
        'platform_fees': platform_fees,
        'platform_fee_rate': (percentage_fees / portfolio_value) * 100,
        'fixed_platform_fees': fixed_platform_fees,
        'advisor_fee': advisor_fee_amount,
        'total_fees': capped_total,
        'uncapped_total_fees': total_fees,
        'was_capped': capped_total < total_fees,
    }
