"""
Tax table configuration and defaults.
Holds the South African individual tax tables used by tax.py, kept separate so
the formulas stay free of constants.
"""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class TaxBracket:
    """One progressive income tax bracket (min/max inclusive, max=None is open)"""
    min: float
    max: Optional[float]
    rate: float  # %
    base_amount: float = 0.0


@dataclass
class TaxRebates:
    """Age-based rebates deducted from gross tax"""
    primary: float = 17_235  # All taxpayers
    secondary: float = 9_444  # Age 65 and older
    tertiary: float = 3_145  # Age 75 and older


@dataclass
class TaxThresholds:
    """Income below which no tax is payable, by age band"""
    under65: float = 95_750
    age65to74: float = 148_217
    age75plus: float = 165_689


@dataclass
class CGTConfig:
    inclusion_rate: float = 40.0  # % of the gain included in taxable income
    annual_exclusion: float = 40_000


@dataclass
class InterestExemption:
    under65: float = 23_800
    age65plus: float = 34_500


def default_income_tax_brackets() -> List[TaxBracket]:
    """2025/2026 SARS brackets"""
    return [
        TaxBracket(0, 237_100, 18, 0),
        TaxBracket(237_101, 370_500, 26, 42_678),
        TaxBracket(370_501, 512_800, 31, 77_362),
        TaxBracket(512_801, 673_000, 36, 121_475),
        TaxBracket(673_001, 857_900, 39, 179_147),
        TaxBracket(857_901, 1_817_000, 41, 251_258),
        TaxBracket(1_817_001, None, 45, 644_489),
    ]


@dataclass
class TaxConfig:
    """
    Configurable tax table.

    Brackets must be sorted ascending and contiguous, with the last bracket
    open-ended. This is not validated here.
    """
    tax_year: str = "2025/2026"
    income_tax_brackets: List[TaxBracket] = field(default_factory=default_income_tax_brackets)
    tax_rebates: TaxRebates = field(default_factory=TaxRebates)
    tax_thresholds: TaxThresholds = field(default_factory=TaxThresholds)
    cgt: CGTConfig = field(default_factory=CGTConfig)
    dividend_withholding_tax: float = 20.0  # %
    interest_exemption: InterestExemption = field(default_factory=InterestExemption)

    @property
    def lowest_rate(self) -> float:
        if not self.income_tax_brackets:
            return 0.0
        return self.income_tax_brackets[0].rate

    @property
    def top_rate(self) -> float:
        if not self.income_tax_brackets:
            return 0.0
        return self.income_tax_brackets[-1].rate


def default_tax_config() -> TaxConfig:
    """South African individual tax configuration for 2025/2026"""
    return TaxConfig()


def flat_tax_config(rate: float) -> TaxConfig:
    """Single-bracket table with no threshold or rebates, handy for what-if runs"""
    return TaxConfig(
        tax_year="flat",
        income_tax_brackets=[TaxBracket(0, None, rate, 0)],
        tax_rebates=TaxRebates(0, 0, 0),
        tax_thresholds=TaxThresholds(0, 0, 0),
        cgt=CGTConfig(),
        dividend_withholding_tax=0.0,
        interest_exemption=InterestExemption(0, 0),
    )
