"""
Tests for the deterministic year-by-year scenario simulation.
"""
import pytest

import simulation
from fee_utils import FeeStructure, Platform
from models import (
    Asset,
    IncomeSource,
    MarketCrash,
    PersonalDetails,
    Profile,
    Scenario,
    Settings,
    UnexpectedExpense,
)
from simulation import MISSING_PROFILE_ERROR, TrajectoryPoint, run_all_scenarios, run_scenario
from tax_utils import flat_tax_config


def make_asset(value, asset_class='Cash', account_type='TFSA', expected_return=0.0, **kwargs):
    return Asset(name=f'{asset_class} {account_type}', asset_class=asset_class, account_type=account_type,
                 units=1, current_price=value, cost_price=value, expected_return=expected_return, **kwargs)


def make_profile(assets, age=65, income=None, scenarios=None, **settings_kwargs):
    settings = Settings(profile=PersonalDetails(age=age), **settings_kwargs)
    return Profile(name='Test', assets=assets, income=income or [], scenarios=scenarios or [], settings=settings)


def flat_scenario(annual_expenses=0.0, retirement_age=65, life_expectancy=90, **kwargs):
    return Scenario(name=kwargs.pop('name', 'Test'), use_expenses_module=False, annual_expenses=annual_expenses,
                    retirement_age=retirement_age, life_expectancy=life_expectancy, **kwargs)


class TestTrajectoryShape:
    """Test the trajectory covers every age exactly once"""

    def test_length_and_ages(self):
        profile = make_profile([make_asset(1_000_000)], age=60)
        result = run_scenario(flat_scenario(), profile)
        assert len(result.trajectory) == 90 - 60 + 1
        assert [point.age for point in result.trajectory] == list(range(60, 91))

    def test_phase_labels(self):
        profile = make_profile([make_asset(1_000_000)], age=63)
        result = run_scenario(flat_scenario(life_expectancy=66), profile)
        assert [point.phase for point in result.trajectory] == ['working', 'working', 'retired', 'retired']

    def test_years_chain(self):
        """Test that each year starts where the previous one ended"""
        profile = make_profile([make_asset(2_000_000, expected_return=7.0)], age=60)
        result = run_scenario(flat_scenario(annual_expenses=150_000), profile)
        for previous, current in zip(result.trajectory, result.trajectory[1:]):
            assert current.net_worth == previous.end_value

    def test_deterministic(self):
        profile = make_profile([make_asset(2_000_000, 'SA Equity', 'Taxable', 9.0, dividend_yield=2)], age=60)
        scenario = flat_scenario(annual_expenses=200_000)
        first = run_scenario(scenario, profile)
        second = run_scenario(scenario, profile)
        assert first.trajectory == second.trajectory
        assert first.final_value == second.final_value


class TestPortfolioProjection:
    """Test growth, withdrawals and depletion"""

    def test_zero_expenses_grows_every_year(self):
        profile = make_profile([make_asset(1_000_000, 'Offshore Equity', expected_return=10.0)], age=60)
        result = run_scenario(flat_scenario(life_expectancy=70), profile)
        values = [point.net_worth for point in result.trajectory]
        assert all(b > a for a, b in zip(values, values[1:]))
        assert result.success is True
        assert result.depletion_age is None
        assert result.final_value == pytest.approx(1_000_000 * 1.1 ** 11)

    def test_depletion(self):
        """Test that 2M drawn at 600k a year with inflation runs out at 68"""
        profile = make_profile([make_asset(2_000_000)], age=65)
        result = run_scenario(flat_scenario(annual_expenses=600_000), profile)
        assert result.success is False
        assert result.depletion_age == 68
        assert 65 < result.depletion_age < 90
        assert result.final_value == 0
        assert result.unfunded_total > 0
        assert all(point.end_value >= 0 for point in result.trajectory)
        assert result.trajectory[-1].end_value == 0

    def test_tfsa_withdrawal_untaxed(self):
        profile = make_profile([make_asset(2_000_000)], age=65)
        result = run_scenario(flat_scenario(annual_expenses=100_000, life_expectancy=65), profile)
        point = result.trajectory[0]
        assert point.withdrawal == pytest.approx(100_000)
        assert point.withdrawal_tax == 0
        assert point.end_value == pytest.approx(1_900_000)

    def test_ra_withdrawal_grossed_up(self):
        """Test that an RA shortfall of 100k at an 18% marginal rate withdraws 118k"""
        profile = make_profile([make_asset(1_000_000, account_type='RA')], age=66)
        result = run_scenario(flat_scenario(annual_expenses=100_000, life_expectancy=66), profile)
        point = result.trajectory[0]
        assert point.withdrawal == pytest.approx(118_000)
        assert point.withdrawal_tax == pytest.approx(18_000)
        assert point.end_value == pytest.approx(882_000)
        assert point.drawdown_rate == pytest.approx(11.8)
        assert result.metrics['withdrawal_tax_rate'] == pytest.approx(18_000 / 118_000 * 100)

    def test_withdrawals_after_depletion_not_recorded(self):
        """Test that totals only count what the portfolio could actually fund"""
        profile = make_profile([make_asset(2_000_000)], age=65)
        result = run_scenario(flat_scenario(annual_expenses=600_000), profile)
        assert result.total_withdrawn == pytest.approx(2_000_000)
        assert all(point.withdrawal <= point.net_worth for point in result.trajectory)
        assert all(point.withdrawal == 0 for point in result.trajectory if point.age > result.depletion_age)
        assert all(point.drawdown_rate <= 100 for point in result.trajectory)

    def test_pre_retirement_shortfall_withdrawn(self):
        """Test that expenses not covered before retirement are drawn from the portfolio and grossed up"""
        profile = make_profile([make_asset(1_000_000, account_type='RA')], age=60)
        result = run_scenario(flat_scenario(annual_expenses=100_000, inflation_rate=0.0, life_expectancy=66),
                              profile)
        point = result.trajectory[0]
        assert point.phase == 'working'
        assert point.withdrawal == pytest.approx(118_000)
        assert point.withdrawal_tax == pytest.approx(18_000)
        assert point.end_value == pytest.approx(882_000)

    def test_gain_ratio_reestimated_each_year(self):
        """Test that growth on a Taxable holding raises the gain ratio and the CGT on later withdrawals"""
        asset = Asset(name='Equity', asset_class='SA Equity', account_type='Taxable', units=1,
                      current_price=1_000_000, cost_price=400_000, expected_return=10.0)
        profile = make_profile([asset], age=65)
        result = run_scenario(flat_scenario(annual_expenses=100_000, inflation_rate=0.0, life_expectancy=67),
                              profile)
        first, second, third = result.trajectory
        assert first.gain_ratio == pytest.approx(0.6)
        assert first.withdrawal_tax == pytest.approx(100_000 * 0.6 * 0.4 * 0.18)
        assert second.gain_ratio > first.gain_ratio
        assert third.gain_ratio > second.gain_ratio
        assert second.withdrawal_tax > first.withdrawal_tax

    def test_withdrawal_tax_cap_warning(self):
        """Test that an implausible tax table caps withdrawal tax at half the shortfall and warns"""
        profile = make_profile([make_asset(1_000_000, account_type='RA')], age=66, tax_config=flat_tax_config(80))
        result = run_scenario(flat_scenario(annual_expenses=100_000, life_expectancy=66), profile)
        point = result.trajectory[0]
        assert point.withdrawal_tax == pytest.approx(50_000)
        assert point.withdrawal == pytest.approx(150_000)
        assert any('capped at 50%' in warning for warning in result.warnings)

    def test_ter_does_not_change_projection(self):
        scenario = flat_scenario(annual_expenses=100_000, life_expectancy=70)
        plain = run_scenario(scenario, make_profile([make_asset(1_000_000, expected_return=6.0)]))
        with_ter = run_scenario(scenario, make_profile([make_asset(1_000_000, expected_return=6.0, ter=0.8)]))
        assert with_ter.trajectory == plain.trajectory

    def test_income_tax_on_taxable_income(self):
        income = [IncomeSource(name='Pension', monthly_amount=25_000, is_inflation_adjusted=False)]
        profile = make_profile([make_asset(1_000_000)], age=66, income=income)
        result = run_scenario(flat_scenario(life_expectancy=66), profile)
        expected_tax = 42_678 + (300_000 - 237_101 + 1) * 0.26 - (17_235 + 9_444)
        assert result.trajectory[0].income_tax == pytest.approx(expected_tax)
        assert result.trajectory[0].income == pytest.approx(300_000 - expected_tax)

    def test_surplus_only_reinvested_after_retirement(self):
        income = [IncomeSource(name='Rental', monthly_amount=20_000, is_taxable=False,
                               is_inflation_adjusted=False)]
        profile = make_profile([make_asset(1_000_000)], age=64, income=income)
        result = run_scenario(flat_scenario(life_expectancy=65), profile)
        working, retired = result.trajectory
        assert working.end_value == pytest.approx(1_000_000)
        assert retired.end_value == pytest.approx(1_240_000)

    def test_savings_before_retirement(self):
        profile = make_profile([make_asset(1_000_000)], age=63)
        result = run_scenario(flat_scenario(monthly_savings=10_000, inflation_rate=0.0, life_expectancy=65), profile)
        assert result.trajectory[0].savings == pytest.approx(120_000)
        assert result.trajectory[1].end_value == pytest.approx(1_240_000)
        assert result.trajectory[2].savings == 0

    def test_platform_fees(self):
        platforms = [Platform(id='p1', name='Platform', fee_structure=FeeStructure(type='percentage', rate=1.0))]
        profile = make_profile([make_asset(1_000_000)], age=65, platforms=platforms)
        result = run_scenario(flat_scenario(life_expectancy=65), profile)
        assert result.trajectory[0].fees == pytest.approx(10_000)
        assert result.final_value == pytest.approx(990_000)
        assert result.total_fees == pytest.approx(10_000)

    def test_currency_movement_adds_to_return(self):
        asset = make_asset(100_000, 'Offshore Equity', expected_return=5.0, currency='USD')
        profile = make_profile([asset], age=65)
        scenario = flat_scenario(life_expectancy=65, use_currency_movement=True,
                                 currency_movement={'USD': 2.0})
        result = run_scenario(scenario, profile)
        assert result.metrics['nominal_return'] == pytest.approx(7.0)
        assert result.metrics['weighted_return'] == pytest.approx(5.0)
        assert result.metrics['currency_effect'] == pytest.approx(2.0)


class TestShocks:
    """Test market crashes and unexpected expenses"""

    def test_crash_hits_affected_class(self):
        profile = make_profile([make_asset(1_000_000, 'Offshore Equity')], age=65)
        scenario = flat_scenario(life_expectancy=70,
                                 market_crashes=[MarketCrash(age=66, asset_class_drops={'Offshore Equity': 40})])
        result = run_scenario(scenario, profile)
        by_age = {point.age: point for point in result.trajectory}
        assert by_age[66].crash_loss == pytest.approx(400_000)
        assert by_age[67].net_worth == pytest.approx(0.6 * by_age[66].net_worth)
        assert all(point.crash_loss == 0 for point in result.trajectory if point.age != 66)

    def test_crash_scaled_by_allocation(self):
        assets = [make_asset(500_000, 'SA Equity'), make_asset(500_000, 'Cash')]
        profile = make_profile(assets, age=65)
        scenario = flat_scenario(life_expectancy=65, market_crashes=[MarketCrash.equity_only(65, 40)])
        result = run_scenario(scenario, profile)
        assert result.trajectory[0].crash_loss == pytest.approx(200_000)
        assert result.final_value == pytest.approx(800_000)

    def test_unexpected_expense(self):
        profile = make_profile([make_asset(1_000_000)], age=65)
        scenario = flat_scenario(life_expectancy=68,
                                 unexpected_expenses=[UnexpectedExpense(age=67, amount=100_000)])
        result = run_scenario(scenario, profile)
        by_age = {point.age: point for point in result.trajectory}
        assert by_age[67].unexpected_expense == 100_000
        assert by_age[67].end_value == pytest.approx(900_000)


class TestCoverageBreakdown:
    """Test how retirement expenses were funded"""

    def test_covered_by_returns(self):
        profile = make_profile([make_asset(1_000_000, expected_return=10.0)], age=65)
        result = run_scenario(flat_scenario(annual_expenses=50_000, life_expectancy=65), profile)
        breakdown = result.expense_coverage_breakdown
        assert breakdown['by_returns']['amount'] == pytest.approx(50_000)
        assert breakdown['by_returns']['percentage'] == pytest.approx(100)
        assert breakdown['by_capital_drawdown']['amount'] == 0

    def test_capital_drawdown_without_returns(self):
        profile = make_profile([make_asset(1_000_000)], age=65)
        result = run_scenario(flat_scenario(annual_expenses=50_000, life_expectancy=65), profile)
        assert result.expense_coverage_breakdown['by_capital_drawdown']['percentage'] == pytest.approx(100)

    def test_no_retirement_expenses(self):
        profile = make_profile([make_asset(1_000_000)], age=65)
        result = run_scenario(flat_scenario(life_expectancy=66), profile)
        assert all(part['percentage'] == 0 for part in result.expense_coverage_breakdown.values())


class TestErrorHandling:
    """Test that failures are reported in the result rather than raised"""

    def test_missing_profile(self):
        result = run_scenario(flat_scenario(), None)
        assert result.success is False
        assert result.error == MISSING_PROFILE_ERROR
        assert result.trajectory == []

    def test_missing_settings(self):
        result = run_scenario(flat_scenario(), Profile(settings=None))
        assert result.error == MISSING_PROFILE_ERROR

    def test_year_error_recorded_and_run_continues(self, monkeypatch):
        real_income = simulation.calculate_income_at_age

        def failing_income(age, *args, **kwargs):
            if age == 67:
                raise RuntimeError('bad income data')
            return real_income(age, *args, **kwargs)

        monkeypatch.setattr(simulation, 'calculate_income_at_age', failing_income)
        profile = make_profile([make_asset(1_000_000)], age=65)
        result = run_scenario(flat_scenario(annual_expenses=50_000, life_expectancy=70), profile)

        assert len(result.trajectory) == 6
        by_age = {point.age: point for point in result.trajectory}
        assert by_age[67].error == 'bad income data'
        assert by_age[67].end_value == by_age[67].net_worth
        assert by_age[68].net_worth == by_age[67].net_worth
        assert result.error is None

    def test_fatal_error(self, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError('boom')

        monkeypatch.setattr(simulation, 'calculate_base_annual_expenses', broken)
        profile = make_profile([make_asset(1_000_000)], age=65)
        result = run_scenario(flat_scenario(), profile)
        assert result.success is False
        assert result.error == 'Simulation failed: boom'
        assert result.trajectory == []

    def test_non_finite_values_replaced(self, monkeypatch):
        monkeypatch.setattr(simulation, 'resolve_expenses_for_age', lambda *args, **kwargs: float('nan'))
        profile = make_profile([make_asset(1_000_000)], age=65)
        result = run_scenario(flat_scenario(life_expectancy=66), profile)
        assert all(point.expenses == 0 for point in result.trajectory)
        assert any('expenses' in warning for warning in result.warnings)
        assert result.success is True


class TestResultSerialisation:
    """Test the camelCase wire form"""

    def test_result_to_dict(self):
        profile = make_profile([make_asset(1_000_000)], age=65)
        data = run_scenario(flat_scenario(annual_expenses=50_000, life_expectancy=66), profile).to_dict()
        assert data['scenarioName'] == 'Test'
        assert 'depletionAge' in data
        assert 'byCapitalDrawdown' in data['expenseCoverageBreakdown']
        assert data['metrics']['startingPortfolio'] == 1_000_000
        assert data['trajectory'][0]['netWorth'] == 1_000_000
        assert 'endValue' in data['trajectory'][0]

    def test_point_to_dict(self):
        point = TrajectoryPoint(age=65, phase='retired', is_retired=True, net_worth=1.0)
        data = point.to_dict()
        assert data['isRetired'] is True
        assert data['crashLoss'] == 0


class TestRunAllScenarios:
    """Test running every scenario on a profile"""

    def test_runs_each_scenario_independently(self):
        scenarios = [flat_scenario(name='Base'), flat_scenario(annual_expenses=600_000, name='Heavy')]
        profile = make_profile([make_asset(2_000_000)], age=65, scenarios=scenarios)
        results = run_all_scenarios(profile)
        assert set(results) == {'Base', 'Heavy'}
        assert results['Base'].success is True
        assert results['Heavy'].success is False

    def test_failure_isolated(self, monkeypatch):
        real_run = simulation.run_scenario

        def flaky(scenario, profile):
            if scenario.name == 'Bad':
                raise RuntimeError('broken scenario')
            return real_run(scenario, profile)

        monkeypatch.setattr(simulation, 'run_scenario', flaky)
        scenarios = [flat_scenario(name='Bad'), flat_scenario(name='Good')]
        profile = make_profile([make_asset(1_000_000)], age=65, scenarios=scenarios)
        results = run_all_scenarios(profile)
        assert results['Bad'].error == 'Simulation failed: broken scenario'
        assert results['Good'].success is True

    def test_no_profile(self):
        assert run_all_scenarios(None) == {}
