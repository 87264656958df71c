"""
Tax-aware withdrawal allocation.

A shortfall is drawn proportionally from TFSA, Taxable and RA holdings. TFSA
withdrawals are tax free, the gain portion of a Taxable withdrawal attracts
CGT, and RA withdrawals are taxed as ordinary income. The gain ratio is
estimated from aggregate cost and value, without per-lot tracking.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List

from currency_utils import DEFAULT_REPORTING_CURRENCY, calculate_asset_value, calculate_cost_basis

logger = logging.getLogger(__name__)

MAX_GAIN_RATIO = 0.95
MAX_WITHDRAWAL_TAX_RATIO = 0.5


@dataclass(frozen=True)
class AccountTypeWeights:
    """Share of investible value per account type. Sums to 1, or all 0 when empty."""
    tfsa: float = 0.0
    taxable: float = 0.0
    ra: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {'tfsa': self.tfsa, 'taxable': self.taxable, 'ra': self.ra}


@dataclass
class WithdrawalAllocation:
    """Split of a net shortfall across account types, grossed up for tax"""
    net_amount: float = 0.0
    tfsa_amount: float = 0.0
    taxable_amount: float = 0.0
    ra_amount: float = 0.0
    tfsa_tax: float = 0.0
    taxable_tax: float = 0.0
    ra_tax: float = 0.0
    total_tax: float = 0.0
    gross_withdrawal: float = 0.0
    effective_tax_rate: float = 0.0  # % of the net amount
    capped: bool = False
    surplus: float = 0.0


def _clamp_ratio(ratio: float) -> float:
    return min(max(ratio, 0.0), MAX_GAIN_RATIO)


def calculate_account_type_weights(assets: List,
                                   exchange_rates: Dict[str, float],
                                   reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> AccountTypeWeights:
    """Proportion of investible value held in TFSA, Taxable and RA accounts"""
    totals = {'TFSA': 0.0, 'Taxable': 0.0, 'RA': 0.0}

    for asset in assets:
        if not asset.is_investible:
            continue
        account_type = asset.account_type if asset.account_type in totals else 'Taxable'
        totals[account_type] += calculate_asset_value(asset, exchange_rates, reporting_currency)

    total_value = sum(totals.values())
    if total_value <= 0:
        return AccountTypeWeights()

    return AccountTypeWeights(
        tfsa=totals['TFSA'] / total_value,
        taxable=totals['Taxable'] / total_value,
        ra=totals['RA'] / total_value,
    )


def calculate_initial_gain_ratio(assets: List,
                                 exchange_rates: Dict[str, float],
                                 reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> float:
    """
    Unrealised gain as a fraction of value, clamped to [0, 0.95].

    Measured on the Taxable sleeve; when there is no Taxable value the whole
    investible portfolio is used instead.
    """
    investible = [asset for asset in assets if asset.is_investible]
    taxable = [asset for asset in investible if asset.account_type not in ('TFSA', 'RA')]

    for sleeve in (taxable, investible):
        value = sum(calculate_asset_value(asset, exchange_rates, reporting_currency) for asset in sleeve)
        if value > 0:
            cost = sum(calculate_cost_basis(asset, exchange_rates, reporting_currency) for asset in sleeve)
            return _clamp_ratio((value - cost) / value)

    return 0.0


def estimate_gain_ratio_for_projection(initial_gain_ratio: float,
                                       initial_cost: float,
                                       current_value: float,
                                       total_withdrawn: float) -> float:
    """
    Re-estimate the gain ratio after growth and withdrawals.

    Withdrawals are assumed to consume cost pro rata, so the remaining cost is
    initial_cost scaled by the share of value not yet withdrawn.

    Args:
        initial_gain_ratio: Gain ratio at the start of the projection
        initial_cost: Cost basis at the start of the projection
        current_value: Portfolio value now
        total_withdrawn: Cumulative gross withdrawals so far

    Returns:
        Gain ratio in [0, 0.95]
    """
    if total_withdrawn <= 0 or current_value <= 0:
        return _clamp_ratio(initial_gain_ratio)

    cost_remaining = initial_cost * (1 - total_withdrawn / (current_value + total_withdrawn))
    gain = max(0.0, current_value - cost_remaining)
    return _clamp_ratio(gain / current_value)


def allocate_withdrawal(shortfall: float,
                        weights: AccountTypeWeights,
                        gain_ratio: float,
                        marginal_rate: float,
                        inclusion_rate: float = 40.0) -> WithdrawalAllocation:
    """
    Split a net shortfall across account types and add the tax on each part.

    A non-positive shortfall is a surplus: nothing is withdrawn and the surplus
    is reported for the caller to reinvest. Tax above half the shortfall is
    treated as a configuration problem and capped.

    Args:
        shortfall: Net amount needed
        weights: Account type weights
        gain_ratio: Share of a Taxable withdrawal that is gain
        marginal_rate: Marginal income tax rate (%)
        inclusion_rate: CGT inclusion rate (%)

    Returns:
        WithdrawalAllocation
    """
    if shortfall <= 0:
        return WithdrawalAllocation(surplus=-shortfall)

    tfsa_amount = shortfall * weights.tfsa
    taxable_amount = shortfall * weights.taxable
    ra_amount = shortfall * weights.ra

    taxable_tax = taxable_amount * gain_ratio * (inclusion_rate / 100) * (marginal_rate / 100)
    ra_tax = ra_amount * (marginal_rate / 100)
    total_tax = taxable_tax + ra_tax

    capped = False
    if total_tax / shortfall > MAX_WITHDRAWAL_TAX_RATIO:
        logger.warning(
            f"Withdrawal tax of {total_tax / shortfall:.1%} exceeds {MAX_WITHDRAWAL_TAX_RATIO:.0%}, "
            f"capping; check the tax configuration")
        scale = (MAX_WITHDRAWAL_TAX_RATIO * shortfall) / total_tax
        taxable_tax *= scale
        ra_tax *= scale
        total_tax = MAX_WITHDRAWAL_TAX_RATIO * shortfall
        capped = True

    return WithdrawalAllocation(
        net_amount=shortfall,
        tfsa_amount=tfsa_amount,
        taxable_amount=taxable_amount,
        ra_amount=ra_amount,
        tfsa_tax=0.0,
        taxable_tax=taxable_tax,
        ra_tax=ra_tax,
        total_tax=total_tax,
        gross_withdrawal=shortfall + total_tax,
        effective_tax_rate=(total_tax / shortfall) * 100,
        capped=capped,
    )
