"""
Domain model for retirement scenarios.
Assets, income sources, expenses, scenarios and profile settings as plain
dataclasses. Legacy input shapes are migrated in io_utils before they get here.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tax_utils import TaxConfig
from fee_utils import AdvisorFee, Platform

ASSET_CLASSES = [
    'Offshore Equity',
    'SA Equity',
    'SA Bonds',
    'Offshore Bonds',
    'Cash',
    'Property',
    'Crypto',
]

# Asset classes hit by a legacy equity-only crash
EQUITY_CLASSES = ['Offshore Equity', 'SA Equity']

ASSET_TYPES = ['Investible', 'Non-Investible']
ACCOUNT_TYPES = ['TFSA', 'RA', 'Taxable']
INCOME_TYPES = ['Work', 'Investment', 'Pension', 'Rental', 'Annuity', 'Other']
EXPENSE_FREQUENCIES = ['Monthly', 'Annual']

DEFAULT_EXPECTED_RETURNS = {
    'Offshore Equity': 11.0,
    'SA Equity': 12.0,
    'SA Bonds': 8.5,
    'Offshore Bonds': 6.5,
    'Cash': 5.0,
    'Property': 9.0,
    'Crypto': 15.0,
}


@dataclass
class Asset:
    """A single holding. Value is units x current_price in the asset's own currency."""
    name: str = ''
    asset_class: str = 'Offshore Equity'
    currency: str = 'ZAR'
    asset_type: str = 'Investible'
    account_type: str = 'Taxable'
    units: float = 0.0
    current_price: float = 0.0
    cost_price: float = 0.0
    dividend_yield: float = 0.0  # % after dividend withholding tax
    interest_yield: float = 0.0  # % gross, taxed at marginal rate
    ter: float = 0.0  # % p.a., informational; expected_return is taken net of TER
    expected_return: Optional[float] = None  # % p.a., overrides the asset class default
    platform: str = ''

    def __post_init__(self):
        if self.units < 0:
            raise ValueError(f"Asset '{self.name}' has negative units: {self.units}")
        if self.current_price < 0:
            raise ValueError(f"Asset '{self.name}' has negative current price: {self.current_price}")

    @property
    def is_investible(self) -> bool:
        return self.asset_type == 'Investible'

    @property
    def native_value(self) -> float:
        return self.units * self.current_price

    @property
    def native_cost(self) -> float:
        return self.units * self.cost_price


@dataclass
class IncomeSource:
    """Recurring income. start_age/end_age of None leave that side open."""
    name: str = ''
    type: str = 'Work'
    monthly_amount: float = 0.0
    currency: str = 'ZAR'
    start_age: Optional[int] = None
    end_age: Optional[int] = None
    is_taxable: bool = True
    is_inflation_adjusted: bool = True
    # Annuity-only fields
    annuity_type: Optional[str] = None  # 'living' or 'life'
    capital_value: Optional[float] = None
    escalation_rate: Optional[float] = None  # % p.a.

    @property
    def is_annuity(self) -> bool:
        return self.type == 'Annuity'


@dataclass
class ExpenseItem:
    """A budget line. Monthly items are annualised x12, Annual items as-is."""
    name: str = ''
    category: str = 'Other'
    amount: float = 0.0
    currency: str = 'ZAR'
    frequency: str = 'Monthly'

    @property
    def annual_amount(self) -> float:
        if self.frequency == 'Annual':
            return self.amount
        return self.amount * 12


@dataclass
class ExpensePhase:
    age_start: int
    age_end: Optional[int]
    percentage: float = 100.0
    name: str = ''

    def contains(self, age: int) -> bool:
        if age < self.age_start:
            return False
        return self.age_end is None or age <= self.age_end


@dataclass
class ExpensePhases:
    """Four ordered life phases; the first band containing an age wins."""
    working: Optional[ExpensePhase] = None
    active_retirement: Optional[ExpensePhase] = None
    slower_pace: Optional[ExpensePhase] = None
    later_years: Optional[ExpensePhase] = None

    def ordered(self) -> List[ExpensePhase]:
        bands = [self.working, self.active_retirement, self.slower_pace, self.later_years]
        return [band for band in bands if band is not None]

    def retirement_phases(self) -> List[ExpensePhase]:
        bands = [self.active_retirement, self.slower_pace, self.later_years]
        return [band for band in bands if band is not None]


def default_life_phases() -> ExpensePhases:
    return ExpensePhases(
        working=ExpensePhase(55, 64, 100, 'Working'),
        active_retirement=ExpensePhase(65, 72, 100, 'Active Retirement'),
        slower_pace=ExpensePhase(73, 80, 80, 'Slower Pace'),
        later_years=ExpensePhase(81, 90, 60, 'Later Years'),
    )


@dataclass
class AgeBasedPhase:
    """Explicit monthly category totals (today's money, reporting currency) for an age range"""
    key: str
    start_age: int
    end_age: int
    name: str = ''
    category_expenses: Dict[str, float] = field(default_factory=dict)

    @property
    def monthly_total(self) -> float:
        return sum(self.category_expenses.values())


@dataclass
class AgeBasedExpensePlan:
    enabled: bool = False
    phases: List[AgeBasedPhase] = field(default_factory=list)


@dataclass
class MarketCrash:
    """A one-off market drop at an exact age, as % drop per asset class"""
    age: int
    asset_class_drops: Dict[str, float] = field(default_factory=dict)
    description: str = ''

    def __post_init__(self):
        for asset_class, drop in self.asset_class_drops.items():
            if not 0 <= drop <= 100:
                raise ValueError(f"Crash drop for {asset_class} must be within 0-100%, got {drop}")

    @classmethod
    def equity_only(cls, age: int, drop_percentage: float, description: str = '') -> 'MarketCrash':
        """Crash expressed as a single drop on the equity classes"""
        return cls(age=age,
                   asset_class_drops={name: drop_percentage for name in EQUITY_CLASSES},
                   description=description)


@dataclass
class UnexpectedExpense:
    age: int
    amount: float
    description: str = ''


@dataclass
class Scenario:
    """Assumptions for one projection run"""
    name: str = 'Base Case'
    description: str = 'Current assumptions'

    inflation_rate: float = 4.5  # %
    retirement_age: int = 65
    life_expectancy: int = 90
    monthly_savings: float = 0.0

    # Expense source: the profile's expense items, or the flat amount below
    use_expenses_module: bool = True
    annual_expenses: float = 0.0

    use_custom_returns: bool = False
    expected_returns: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_EXPECTED_RETURNS))

    # Annual % change of each currency against the reporting currency
    use_currency_movement: bool = False
    currency_movement: Dict[str, float] = field(default_factory=lambda: {'USD': 0.0, 'EUR': 0.0, 'GBP': 0.0})

    use_custom_expense_phases: bool = False
    expense_phases: ExpensePhases = field(default_factory=default_life_phases)

    market_crashes: List[MarketCrash] = field(default_factory=list)
    unexpected_expenses: List[UnexpectedExpense] = field(default_factory=list)

    # Written by io_utils.record_scenario_run, never by the engine
    results: Optional[Dict[str, Any]] = None
    last_run: Optional[str] = None

    def __post_init__(self):
        if self.life_expectancy < self.retirement_age:
            raise ValueError(
                f"Life expectancy ({self.life_expectancy}) must not be below retirement age ({self.retirement_age})")

    def crash_at(self, age: int) -> Optional[MarketCrash]:
        return next((crash for crash in self.market_crashes if crash.age == age), None)

    def unexpected_expense_at(self, age: int) -> Optional[UnexpectedExpense]:
        return next((expense for expense in self.unexpected_expenses if expense.age == age), None)


@dataclass
class PersonalDetails:
    name: str = 'Default'
    age: int = 55
    retirement_age: int = 65
    life_expectancy: int = 90
    annual_expenses: float = 0.0  # used when no expense items are captured
    marginal_tax_rate: float = 39.0  # %, informational


@dataclass
class WithdrawalRates:
    conservative: float = 3.0  # %
    safe: float = 4.0
    aggressive: float = 5.0


@dataclass
class Settings:
    profile: PersonalDetails = field(default_factory=PersonalDetails)
    reporting_currency: str = 'ZAR'
    # 1 unit of foreign currency = X units of reporting currency
    exchange_rates: Dict[str, float] = field(default_factory=lambda: {'USD': 18.50, 'EUR': 19.80, 'GBP': 23.20})
    expected_returns: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_EXPECTED_RETURNS))
    life_phases: ExpensePhases = field(default_factory=default_life_phases)
    withdrawal_rates: WithdrawalRates = field(default_factory=WithdrawalRates)
    inflation: float = 4.5  # %
    tax_config: TaxConfig = field(default_factory=TaxConfig)
    platforms: List[Platform] = field(default_factory=list)
    advisor_fee: AdvisorFee = field(default_factory=AdvisorFee)


@dataclass
class Profile:
    name: str = 'Default'
    assets: List[Asset] = field(default_factory=list)
    income: List[IncomeSource] = field(default_factory=list)
    expenses: List[ExpenseItem] = field(default_factory=list)
    age_based_expense_plan: AgeBasedExpensePlan = field(default_factory=AgeBasedExpensePlan)
    scenarios: List[Scenario] = field(default_factory=list)
    settings: Optional[Settings] = field(default_factory=Settings)
    data_version: str = '3.1.0'

    @property
    def investible_assets(self) -> List[Asset]:
        return [asset for asset in self.assets if asset.is_investible]
