"""
Progressive income tax model with age-based rebates and thresholds.
Also covers capital gains, dividend and interest tax treatment, and the tax on
a withdrawal spread across TFSA / RA / Taxable accounts.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from tax_utils import TaxConfig, TaxRebates, TaxThresholds, default_tax_config


@dataclass
class IncomeTaxResult:
    """Result of an income tax calculation"""
    gross_tax: float
    rebate: float
    net_tax: float
    effective_rate: float  # % of taxable income
    marginal_rate: float  # %


@dataclass
class CGTResult:
    """Result of a capital gains tax calculation"""
    taxable_gain: float
    inclusion_amount: float
    cgt_payable: float
    effective_cgt_rate: float  # % of the original gain


def get_tax_rebate(age: int, tax_rebates: Optional[TaxRebates] = None) -> float:
    """Total rebate for the age: primary, plus secondary at 65+, plus tertiary at 75+"""
    if tax_rebates is None:
        tax_rebates = TaxRebates()

    rebate = tax_rebates.primary
    if age >= 65:
        rebate += tax_rebates.secondary
    if age >= 75:
        rebate += tax_rebates.tertiary
    return rebate


def get_tax_threshold(age: int, tax_thresholds: Optional[TaxThresholds] = None) -> float:
    """Income level below which no tax is payable for the age"""
    if tax_thresholds is None:
        tax_thresholds = TaxThresholds()

    if age >= 75:
        return tax_thresholds.age75plus
    elif age >= 65:
        return tax_thresholds.age65to74
    return tax_thresholds.under65


def marginal_tax_rate(taxable_income: float, tax_config: Optional[TaxConfig] = None) -> float:
    """
    Marginal tax rate (%) for the bracket containing the income.

    Args:
        taxable_income: Annual taxable income
        tax_config: Tax table, defaults to the current SA table

    Returns:
        Rate of the matching bracket; the top rate above all brackets and the
        lowest rate below the first one
    """
    if tax_config is None:
        tax_config = default_tax_config()

    brackets = tax_config.income_tax_brackets
    if not brackets:
        return 0.0

    if taxable_income < brackets[0].min:
        return brackets[0].rate

    for bracket in brackets:
        upper = float('inf') if bracket.max is None else bracket.max
        if bracket.min <= taxable_income <= upper:
            return bracket.rate

    # Falls between a bracket's max and the next min, or above all brackets
    current_rate = brackets[0].rate
    for bracket in brackets:
        if taxable_income >= bracket.min:
            current_rate = bracket.rate
        else:
            break
    return current_rate


def calculate_income_tax(taxable_income: float,
                         age: int,
                         tax_config: Optional[TaxConfig] = None) -> IncomeTaxResult:
    """
    Calculate income tax using the progressive bracket table.

    Tax within a bracket is base_amount + (income - min + 1) * rate, where the
    +1 reflects the inclusive bracket boundaries of the published tables.

    Args:
        taxable_income: Annual taxable income
        age: Taxpayer age (drives threshold and rebates)
        tax_config: Tax table, defaults to the current SA table

    Returns:
        IncomeTaxResult
    """
    if tax_config is None:
        tax_config = default_tax_config()

    threshold = get_tax_threshold(age, tax_config.tax_thresholds)
    if taxable_income <= threshold:
        return IncomeTaxResult(
            gross_tax=0.0,
            rebate=0.0,
            net_tax=0.0,
            effective_rate=0.0,
            marginal_rate=tax_config.lowest_rate,
        )

    gross_tax = 0.0
    marginal_rate = tax_config.lowest_rate
    brackets = tax_config.income_tax_brackets

    for bracket in brackets:
        if taxable_income >= bracket.min:
            upper = float('inf') if bracket.max is None else bracket.max
            if taxable_income <= upper:
                gross_tax = bracket.base_amount + (taxable_income - bracket.min + 1) * bracket.rate / 100
                marginal_rate = bracket.rate
                break
    else:
        # Income sits in a gap between integer boundaries (e.g. 237_100.5):
        # hold the lower bracket's tax at its max
        for bracket in reversed(brackets):
            if taxable_income >= bracket.min and bracket.max is not None:
                gross_tax = bracket.base_amount + (bracket.max - bracket.min + 1) * bracket.rate / 100
                marginal_rate = bracket.rate
                break

    rebate = get_tax_rebate(age, tax_config.tax_rebates)
    net_tax = max(0.0, gross_tax - rebate)
    effective_rate = (net_tax / taxable_income) * 100 if taxable_income > 0 else 0.0

    return IncomeTaxResult(
        gross_tax=gross_tax,
        rebate=rebate,
        net_tax=net_tax,
        effective_rate=effective_rate,
        marginal_rate=marginal_rate,
    )


def calculate_cgt(capital_gain: float,
                  age: int,
                  tax_config: Optional[TaxConfig] = None,
                  other_income: float = 0.0) -> CGTResult:
    """
    Calculate capital gains tax on a realised gain.

    Args:
        capital_gain: Realised gain
        age: Taxpayer age
        tax_config: Tax table
        other_income: Other taxable income in the year (sets the marginal rate)

    Returns:
        CGTResult
    """
    if tax_config is None:
        tax_config = default_tax_config()

    if capital_gain <= 0:
        return CGTResult(0.0, 0.0, 0.0, 0.0)

    taxable_gain = max(0.0, capital_gain - tax_config.cgt.annual_exclusion)
    inclusion_amount = taxable_gain * (tax_config.cgt.inclusion_rate / 100)

    rate = marginal_tax_rate(other_income + inclusion_amount, tax_config)
    cgt_payable = inclusion_amount * (rate / 100)
    effective_cgt_rate = (cgt_payable / capital_gain) * 100

    return CGTResult(
        taxable_gain=taxable_gain,
        inclusion_amount=inclusion_amount,
        cgt_payable=cgt_payable,
        effective_cgt_rate=effective_cgt_rate,
    )


def calculate_dividend_tax(gross_dividends: float,
                           tax_config: Optional[TaxConfig] = None) -> Dict[str, float]:
    """Flat dividend withholding tax"""
    if tax_config is None:
        tax_config = default_tax_config()

    withholding_tax = gross_dividends * (tax_config.dividend_withholding_tax / 100)
    return {
        'withholding_tax': withholding_tax,
        'net_dividends': gross_dividends - withholding_tax,
    }


def calculate_interest_tax(interest_income: float,
                           age: int,
                           other_income: float = 0.0,
                           tax_config: Optional[TaxConfig] = None) -> Dict[str, float]:
    """
    Tax on interest after the age-based annual exemption.

    The remainder is taxed at the marginal rate of other income plus the
    taxable interest.
    """
    if tax_config is None:
        tax_config = default_tax_config()

    if age >= 65:
        exemption = tax_config.interest_exemption.age65plus
    else:
        exemption = tax_config.interest_exemption.under65

    taxable_interest = max(0.0, interest_income - exemption)
    if taxable_interest <= 0:
        return {'exemption': exemption, 'taxable_interest': 0.0, 'tax_on_interest': 0.0}

    rate = marginal_tax_rate(other_income + taxable_interest, tax_config)
    return {
        'exemption': exemption,
        'taxable_interest': taxable_interest,
        'tax_on_interest': taxable_interest * (rate / 100),
    }


def calculate_withdrawal_tax(withdrawal_amount: float,
                             age: int,
                             account_mix: Dict[str, float],
                             other_income: float = 0.0,
                             tax_config: Optional[TaxConfig] = None,
                             gain_ratio: float = 0.5) -> Dict:
    """
    Tax on a single withdrawal spread over account types.

    Args:
        withdrawal_amount: Amount withdrawn
        age: Age at withdrawal
        account_mix: {'tfsa': %, 'ra': %, 'taxable': %}
        other_income: Other taxable income in the year
        tax_config: Tax table
        gain_ratio: Share of the taxable-account withdrawal that is gain

    Returns:
        Dict with effective_rate (%), total_tax and a per-account breakdown
    """
    if tax_config is None:
        tax_config = default_tax_config()

    breakdown = {
        'tfsa': {'amount': 0.0, 'tax': 0.0, 'rate': 0.0},
        'ra': {'amount': 0.0, 'tax': 0.0, 'rate': 0.0},
        'taxable': {'amount': 0.0, 'tax': 0.0, 'rate': 0.0},
    }

    if account_mix.get('tfsa', 0) > 0:
        breakdown['tfsa']['amount'] = withdrawal_amount * (account_mix['tfsa'] / 100)

    if account_mix.get('ra', 0) > 0:
        ra_amount = withdrawal_amount * (account_mix['ra'] / 100)
        # Ongoing RA withdrawals are taxed as income on top of other income
        with_ra = calculate_income_tax(other_income + ra_amount, age, tax_config)
        without_ra = calculate_income_tax(other_income, age, tax_config)
        breakdown['ra']['amount'] = ra_amount
        breakdown['ra']['tax'] = with_ra.net_tax - without_ra.net_tax
        breakdown['ra']['rate'] = (breakdown['ra']['tax'] / ra_amount) * 100 if ra_amount > 0 else 0.0

    if account_mix.get('taxable', 0) > 0:
        taxable_amount = withdrawal_amount * (account_mix['taxable'] / 100)
        cgt = calculate_cgt(taxable_amount * gain_ratio, age, tax_config, other_income)
        breakdown['taxable']['amount'] = taxable_amount
        breakdown['taxable']['tax'] = cgt.cgt_payable
        breakdown['taxable']['rate'] = (cgt.cgt_payable / taxable_amount) * 100 if taxable_amount > 0 else 0.0

    total_tax = sum(part['tax'] for part in breakdown.values())
    effective_rate = (total_tax / withdrawal_amount) * 100 if withdrawal_amount > 0 else 0.0

    return {
        'effective_rate': effective_rate,
        'total_tax': total_tax,
        'breakdown': breakdown,
    }


def get_tax_summary(annual_income: float, age: int,
                    tax_config: Optional[TaxConfig] = None) -> Dict:
    """Income tax summary for display"""
    if tax_config is None:
        tax_config = default_tax_config()

    result = calculate_income_tax(annual_income, age, tax_config)
    threshold = get_tax_threshold(age, tax_config.tax_thresholds)

    return {
        'tax_year': tax_config.tax_year,
        'annual_income': annual_income,
        'age': age,
        'threshold': threshold,
        'below_threshold': annual_income <= threshold,
        'gross_tax': result.gross_tax,
        'rebate': result.rebate,
        'net_tax': result.net_tax,
        'effective_rate': result.effective_rate,
        'marginal_rate': result.marginal_rate,
        'monthly_tax': result.net_tax / 12,
        'take_home_pay': annual_income - result.net_tax,
        'monthly_take_home': (annual_income - result.net_tax) / 12,
    }
