"""
Deterministic retirement scenario simulation.
Projects an investible portfolio year by year from the current age to life
expectancy under tax-aware withdrawals, multi-source income, phase-based
expenses, fees and one-off shocks. Pure functions of their inputs, no I/O.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np

from currency_utils import calculate_asset_value, calculate_portfolio_return
from expenses import calculate_base_annual_expenses, resolve_expenses_for_age
from fee_utils import calculate_scenario_year_fees
from income import (
    calculate_dividend_income_from_assets,
    calculate_income_at_age,
    calculate_interest_income_from_assets,
)
from models import EQUITY_CLASSES, Profile, Scenario
from tax import calculate_income_tax, marginal_tax_rate
from withdrawal import (
    AccountTypeWeights,
    allocate_withdrawal,
    calculate_account_type_weights,
    calculate_initial_gain_ratio,
    estimate_gain_ratio_for_projection,
)

logger = logging.getLogger(__name__)

MISSING_PROFILE_ERROR = "Missing required profile data"


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def _camel_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {_camel(key): _camel_keys(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_camel_keys(item) for item in data]
    return data


@dataclass(frozen=True)
class TrajectoryPoint:
    """One simulated year. net_worth is the start-of-year value, end_value after all events."""
    age: int
    phase: str  # 'working' or 'retired'
    is_retired: bool
    net_worth: float
    expenses: float = 0.0
    income: float = 0.0  # net of income tax
    gross_income: float = 0.0
    income_tax: float = 0.0
    dividend_income: float = 0.0
    interest_income: float = 0.0  # net of tax
    savings: float = 0.0
    growth: float = 0.0
    fees: float = 0.0
    withdrawal: float = 0.0  # gross, including withdrawal tax
    withdrawal_tax: float = 0.0
    drawdown_rate: float = 0.0  # % of start-of-year value
    gain_ratio: float = 0.0
    covered_by_income: float = 0.0
    covered_by_returns: float = 0.0
    capital_drawdown: float = 0.0
    crash_loss: float = 0.0
    unexpected_expense: float = 0.0
    end_value: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _camel_keys(asdict(self))


def _empty_breakdown() -> Dict[str, Dict[str, float]]:
    return {
        'by_income': {'amount': 0.0, 'percentage': 0.0},
        'by_returns': {'amount': 0.0, 'percentage': 0.0},
        'by_capital_drawdown': {'amount': 0.0, 'percentage': 0.0},
    }


@dataclass
class ScenarioResult:
    """Outcome of one scenario run"""
    scenario_name: str = ''
    trajectory: List[TrajectoryPoint] = field(default_factory=list)
    success: bool = False
    depletion_age: Optional[int] = None
    final_value: float = 0.0
    shortfall: float = 0.0
    unfunded_total: float = 0.0
    total_withdrawn: float = 0.0
    total_income: float = 0.0
    total_expenses: float = 0.0
    total_fees: float = 0.0
    total_withdrawal_tax: float = 0.0
    expense_coverage_breakdown: Dict[str, Dict[str, float]] = field(default_factory=_empty_breakdown)
    metrics: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    run_at: str = ''

    def to_dict(self) -> Dict[str, Any]:
        """camelCase wire form"""
        data = asdict(self)
        data['trajectory'] = [point.to_dict() for point in self.trajectory]
        return {_camel(key): (value if key == 'trajectory' else _camel_keys(value))
                for key, value in data.items()}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def failed_result(scenario_name: str, error: str) -> ScenarioResult:
    """Empty failed result carrying an error message"""
    return ScenarioResult(scenario_name=scenario_name, success=False, error=error, run_at=_now_iso())


class ScenarioSimulator:
    """Runs one scenario against a profile"""

    def __init__(self, scenario: Scenario, profile: Profile):
        self.scenario = scenario
        self.profile = profile
        self.settings = profile.settings
        self._reset()

    def _reset(self):
        self._warnings: List[str] = []
        self._trajectory: List[TrajectoryPoint] = []
        self._totals = {
            'withdrawn': 0.0,
            'withdrawal_tax': 0.0,
            'income': 0.0,
            'expenses': 0.0,
            'fees': 0.0,
            'covered_by_income': 0.0,
            'covered_by_returns': 0.0,
            'capital_drawdown': 0.0,
            'unfunded': 0.0,
        }
        self._success = True
        self._depletion_age: Optional[int] = None
        self._portfolio_value = 0.0

        self.current_age = 0
        self.starting_portfolio = 0.0
        self.weighted_return = 0.0
        self.total_return = 0.0
        self.real_return = 0.0
        self.weights = AccountTypeWeights()
        self.initial_gain_ratio = 0.0
        self.initial_cost = 0.0
        self.allocation: Dict[str, float] = {}
        self.base_annual_expenses = 0.0
        self.base_dividend_income = 0.0
        self.base_interest_income = 0.0

    def _finite(self, value: float, label: str, age: Optional[int] = None) -> float:
        """Replace NaN/inf with 0 and record a warning"""
        if np.isfinite(value):
            return float(value)
        where = f" at age {age}" if age is not None else ""
        message = f"Non-finite {label}{where} ({value}) replaced with 0"
        logger.warning(message)
        self._warnings.append(message)
        return 0.0

    def _precompute(self):
        """Run-level values computed once from the starting position"""
        scenario = self.scenario
        settings = self.settings
        assets = self.profile.assets
        rates = settings.exchange_rates
        currency = settings.reporting_currency

        self.current_age = settings.profile.age

        investible = [asset for asset in assets if asset.is_investible]
        values = np.array([calculate_asset_value(asset, rates, currency) for asset in investible], dtype=float)
        self.starting_portfolio = self._finite(values.sum() if values.size else 0.0, 'starting portfolio')

        expected_returns = scenario.expected_returns if scenario.use_custom_returns else settings.expected_returns
        movement = scenario.currency_movement if scenario.use_currency_movement else None
        self.weighted_return = self._finite(
            calculate_portfolio_return(assets, rates, expected_returns, currency), 'weighted return')
        self.total_return = self._finite(
            calculate_portfolio_return(assets, rates, expected_returns, currency, movement), 'total return')
        self.real_return = self._finite(
            ((1 + self.total_return / 100) / (1 + scenario.inflation_rate / 100) - 1) * 100, 'real return')

        self.weights = calculate_account_type_weights(assets, rates, currency)
        self.initial_gain_ratio = calculate_initial_gain_ratio(assets, rates, currency)
        self.initial_cost = self.starting_portfolio * (1 - self.initial_gain_ratio)

        self.allocation = {}
        if self.starting_portfolio > 0:
            for asset, value in zip(investible, values):
                share = value / self.starting_portfolio
                self.allocation[asset.asset_class] = self.allocation.get(asset.asset_class, 0.0) + share

        self.base_annual_expenses = self._finite(
            calculate_base_annual_expenses(scenario, self.profile, rates), 'base annual expenses')
        self.base_dividend_income = calculate_dividend_income_from_assets(assets, rates, currency)
        self.base_interest_income = calculate_interest_income_from_assets(assets, rates, 0.0, currency)['gross']

        logger.debug(
            f"Scenario '{scenario.name}': start {self.starting_portfolio:,.0f}, "
            f"return {self.total_return:.2f}%, gain ratio {self.initial_gain_ratio:.2f}")

    def _expense_phases(self):
        if self.scenario.use_custom_expense_phases:
            return self.scenario.expense_phases
        return self.settings.life_phases

    def _simulate_year(self, age: int) -> TrajectoryPoint:
        """Advance the portfolio through one age and return its row. Totals are committed on success."""
        scenario = self.scenario
        settings = self.settings
        tax_config = settings.tax_config
        value_start = self._portfolio_value
        value = value_start
        years_from_now = age - self.current_age
        is_retired = age >= scenario.retirement_age
        inflation_factor = (1 + scenario.inflation_rate / 100) ** years_from_now

        expenses = self._finite(resolve_expenses_for_age(
            age, self.base_annual_expenses, scenario.inflation_rate, years_from_now,
            self._expense_phases(), self.profile.age_based_expense_plan), 'expenses', age)

        source_income = calculate_income_at_age(
            age, self.profile.income, settings.exchange_rates, scenario.inflation_rate,
            years_from_now, settings.reporting_currency)
        source_total = source_income['total_income']
        taxable_income = source_income['taxable_income']

        growth_factor = value_start / self.starting_portfolio if self.starting_portfolio > 0 else 1.0
        dividend_income = self._finite(self.base_dividend_income * growth_factor, 'dividend income', age)
        gross_interest = self.base_interest_income * growth_factor
        interest_rate = marginal_tax_rate(taxable_income + gross_interest, tax_config)
        interest_net = self._finite(gross_interest * (1 - interest_rate / 100), 'interest income', age)

        income_tax = self._finite(calculate_income_tax(taxable_income, age, tax_config).net_tax, 'income tax', age)
        net_income = self._finite(source_total - income_tax + dividend_income + interest_net, 'net income', age)
        shortfall = expenses - net_income

        ra_part = max(0.0, shortfall) * self.weights.ra
        withdrawal_rate = marginal_tax_rate(taxable_income + ra_part, tax_config)
        gain_ratio = estimate_gain_ratio_for_projection(
            self.initial_gain_ratio, self.initial_cost, value_start, self._totals['withdrawn'])

        savings = 0.0
        covered_by_income = 0.0
        covered_by_returns = 0.0
        capital_drawdown = 0.0
        withdrawal = 0.0
        withdrawal_tax = 0.0

        if is_retired:
            covered_by_income = min(max(net_income, 0.0), expenses)
            if shortfall > 0:
                expected_return_amount = max(0.0, value * self.total_return / 100)
                if expected_return_amount >= shortfall:
                    covered_by_returns = shortfall
                else:
                    covered_by_returns = expected_return_amount
                    capital_drawdown = shortfall - expected_return_amount

        if shortfall > 0:
            allocation = allocate_withdrawal(shortfall, self.weights, gain_ratio, withdrawal_rate,
                                             tax_config.cgt.inclusion_rate)
            if allocation.capped:
                self._warnings.append(
                    f"Withdrawal tax capped at 50% at age {age}; check the tax configuration")
            withdrawal = self._finite(allocation.gross_withdrawal, 'withdrawal', age)
            withdrawal_tax = self._finite(allocation.total_tax, 'withdrawal tax', age)
            value -= withdrawal
            # Only the part the portfolio could fund is recorded; the rest ends up in unfunded
            if withdrawal > value_start:
                funded_share = max(value_start, 0.0) / withdrawal
                withdrawal *= funded_share
                withdrawal_tax *= funded_share
        elif is_retired:
            # Retired surplus is reinvested untaxed
            value += -shortfall

        if not is_retired:
            savings = self._finite(scenario.monthly_savings * 12 * inflation_factor, 'savings', age)
            value += savings

        growth = 0.0
        if value > 0:
            growth = self._finite(value * self.total_return / 100, 'growth', age)
            value += growth

        fees = self._finite(calculate_scenario_year_fees(value, settings)['total_fees'], 'fees', age)
        value -= fees

        crash_loss = 0.0
        crash = scenario.crash_at(age)
        if crash is not None and value > 0:
            drop = sum(self.allocation.get(asset_class, 0.0) * pct / 100
                       for asset_class, pct in crash.asset_class_drops.items())
            crash_loss = self._finite(value * drop, 'crash loss', age)
            value -= crash_loss

        unexpected = 0.0
        unexpected_expense = scenario.unexpected_expense_at(age)
        if unexpected_expense is not None:
            unexpected = self._finite(unexpected_expense.amount, 'unexpected expense', age)
            value -= unexpected

        value = self._finite(value, 'portfolio value', age)
        unfunded = 0.0
        if value < 0:
            unfunded = -value
            if self._success:
                self._success = False
                self._depletion_age = age
                logger.info(f"Scenario '{scenario.name}' depleted at age {age}")
            value = 0.0

        drawdown_rate = (withdrawal / value_start) * 100 if value_start > 0 else 0.0

        # Commit
        self._portfolio_value = value
        totals = self._totals
        totals['withdrawn'] += withdrawal
        totals['withdrawal_tax'] += withdrawal_tax
        totals['income'] += net_income
        totals['fees'] += fees
        totals['unfunded'] += unfunded
        if is_retired:
            totals['expenses'] += expenses
            totals['covered_by_income'] += covered_by_income
            totals['covered_by_returns'] += covered_by_returns
            totals['capital_drawdown'] += capital_drawdown

        return TrajectoryPoint(
            age=age,
            phase='retired' if is_retired else 'working',
            is_retired=is_retired,
            net_worth=value_start,
            expenses=expenses,
            income=net_income,
            gross_income=self._finite(source_total + dividend_income + gross_interest, 'gross income', age),
            income_tax=income_tax,
            dividend_income=dividend_income,
            interest_income=interest_net,
            savings=savings,
            growth=growth,
            fees=fees,
            withdrawal=withdrawal,
            withdrawal_tax=withdrawal_tax,
            drawdown_rate=self._finite(drawdown_rate, 'drawdown rate', age),
            gain_ratio=gain_ratio,
            covered_by_income=covered_by_income,
            covered_by_returns=self._finite(covered_by_returns, 'covered by returns', age),
            capital_drawdown=self._finite(capital_drawdown, 'capital drawdown', age),
            crash_loss=crash_loss,
            unexpected_expense=unexpected,
            end_value=value,
        )

    def _coverage_breakdown(self) -> Dict[str, Dict[str, float]]:
        total_expenses = self._totals['expenses']
        if total_expenses <= 0:
            return _empty_breakdown()

        parts = {
            'by_income': self._totals['covered_by_income'],
            'by_returns': self._totals['covered_by_returns'],
            'by_capital_drawdown': self._totals['capital_drawdown'],
        }
        return {
            key: {'amount': amount, 'percentage': self._finite(amount / total_expenses * 100, key)}
            for key, amount in parts.items()
        }

    def _metrics(self) -> Dict[str, Any]:
        scenario = self.scenario
        totals = self._totals
        withdrawal_tax_rate = 0.0
        if totals['withdrawn'] > 0:
            withdrawal_tax_rate = totals['withdrawal_tax'] / totals['withdrawn'] * 100
        equity_share = sum(self.allocation.get(asset_class, 0.0) for asset_class in EQUITY_CLASSES)

        return {
            'nominal_return': self.total_return,
            'weighted_return': self.weighted_return,
            'currency_effect': self.total_return - self.weighted_return,
            'real_return': self.real_return,
            'inflation_rate': scenario.inflation_rate,
            'withdrawal_tax_rate': self._finite(withdrawal_tax_rate, 'withdrawal tax rate'),
            'equity_percentage': equity_share * 100,
            'base_annual_expenses': self.base_annual_expenses,
            'starting_portfolio': self.starting_portfolio,
            'retirement_age': scenario.retirement_age,
            'life_expectancy': scenario.life_expectancy,
            'years_in_retirement': scenario.life_expectancy - scenario.retirement_age,
            'initial_gain_ratio': self.initial_gain_ratio,
            'account_type_weights': self.weights.to_dict(),
        }

    def _build_result(self, error: Optional[str] = None) -> ScenarioResult:
        totals = self._totals
        success = self._success and error is None
        final_value = self._portfolio_value

        return ScenarioResult(
            scenario_name=self.scenario.name,
            trajectory=list(self._trajectory),
            success=success,
            depletion_age=self._depletion_age,
            final_value=final_value,
            shortfall=0.0 if success else abs(final_value),
            unfunded_total=totals['unfunded'],
            total_withdrawn=totals['withdrawn'],
            total_income=totals['income'],
            total_expenses=totals['expenses'],
            total_fees=totals['fees'],
            total_withdrawal_tax=totals['withdrawal_tax'],
            expense_coverage_breakdown=self._coverage_breakdown(),
            metrics=self._metrics(),
            warnings=list(self._warnings),
            error=error,
            run_at=_now_iso(),
        )

    def run(self) -> ScenarioResult:
        """Simulate every age from the current age to life expectancy inclusive"""
        self._reset()
        try:
            self._precompute()
            self._portfolio_value = self.starting_portfolio

            for age in range(self.current_age, self.scenario.life_expectancy + 1):
                value_start = self._portfolio_value
                try:
                    point = self._simulate_year(age)
                except Exception as e:
                    logger.exception(f"Scenario '{self.scenario.name}' failed at age {age}")
                    self._portfolio_value = value_start
                    is_retired = age >= self.scenario.retirement_age
                    point = TrajectoryPoint(
                        age=age,
                        phase='retired' if is_retired else 'working',
                        is_retired=is_retired,
                        net_worth=value_start,
                        end_value=value_start,
                        error=str(e),
                    )
                self._trajectory.append(point)

            return self._build_result()
        except Exception as e:
            logger.exception(f"Scenario '{self.scenario.name}' simulation failed")
            return self._build_result(error=f"Simulation failed: {e}")


def run_scenario(scenario: Optional[Scenario], profile: Optional[Profile]) -> ScenarioResult:
    """
    Run a single retirement scenario.

    Args:
        scenario: Scenario assumptions
        profile: Profile with assets, income, expenses and settings

    Returns:
        ScenarioResult. Missing inputs give a failed result, never an exception.
    """
    if scenario is None or profile is None or profile.settings is None:
        name = scenario.name if scenario is not None else ''
        logger.error(f"Cannot run scenario '{name}': {MISSING_PROFILE_ERROR}")
        return failed_result(name, MISSING_PROFILE_ERROR)

    return ScenarioSimulator(scenario, profile).run()


def run_all_scenarios(profile: Optional[Profile]) -> Dict[str, ScenarioResult]:
    """Run every scenario on the profile independently, keyed by scenario name"""
    if profile is None:
        return {}

    results = {}
    for scenario in profile.scenarios:
        try:
            results[scenario.name] = run_scenario(scenario, profile)
        except Exception as e:
            logger.exception(f"Scenario '{scenario.name}' raised")
            results[scenario.name] = failed_result(scenario.name, f"Simulation failed: {e}")
    return results
