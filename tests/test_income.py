"""
Unit tests for recurring income and income thrown off by assets.
"""
from income import (
    calculate_dividend_income_from_assets,
    calculate_income_at_age,
    calculate_interest_income_from_assets,
    is_source_active,
)
from models import Asset, IncomeSource

RATES = {'USD': 18.5, 'EUR': 19.8, 'GBP': 23.2}


class TestIsSourceActive:
    """Test the start/end age window"""

    def test_open_ended_source(self):
        source = IncomeSource(name='Rental')
        assert is_source_active(source, 20)
        assert is_source_active(source, 99)

    def test_window_is_inclusive(self):
        source = IncomeSource(name='Job', start_age=30, end_age=62)
        assert not is_source_active(source, 29)
        assert is_source_active(source, 30)
        assert is_source_active(source, 62)
        assert not is_source_active(source, 63)


class TestCalculateIncomeAtAge:
    """Test annual income aggregation"""

    def test_no_growth_in_first_year(self):
        source = IncomeSource(name='Pension', monthly_amount=10_000)
        result = calculate_income_at_age(65, [source], RATES, 4.5, 0)
        assert abs(result['total_income'] - 120_000) < 1e-6

    def test_inflation_adjusted_source(self):
        source = IncomeSource(name='Pension', monthly_amount=10_000)
        result = calculate_income_at_age(67, [source], RATES, 4.5, 2)
        assert abs(result['total_income'] - 120_000 * 1.045 ** 2) < 1e-6

    def test_fixed_source_never_escalates(self):
        source = IncomeSource(name='Fixed', monthly_amount=10_000, is_inflation_adjusted=False)
        result = calculate_income_at_age(70, [source], RATES, 6.0, 5)
        assert abs(result['total_income'] - 120_000) < 1e-6

    def test_annuity_uses_its_own_escalation(self):
        """Test that an annuity escalates at its escalation rate rather than inflation"""
        source = IncomeSource(name='Annuity', type='Annuity', monthly_amount=10_000,
                              annuity_type='life', escalation_rate=3.0)
        result = calculate_income_at_age(67, [source], RATES, 6.0, 2)
        assert abs(result['total_income'] - 120_000 * 1.03 ** 2) < 1e-6

    def test_foreign_source_converted(self):
        source = IncomeSource(name='US Pension', monthly_amount=1_000, currency='USD')
        result = calculate_income_at_age(65, [source], RATES, 4.5, 0)
        assert abs(result['total_income'] - 222_000) < 1e-6

    def test_taxable_subset(self):
        sources = [
            IncomeSource(name='Salary', monthly_amount=20_000),
            IncomeSource(name='Gift', monthly_amount=5_000, is_taxable=False),
        ]
        result = calculate_income_at_age(60, sources, RATES, 4.5, 0)
        assert abs(result['total_income'] - 300_000) < 1e-6
        assert abs(result['taxable_income'] - 240_000) < 1e-6

    def test_inactive_sources_excluded(self):
        sources = [IncomeSource(name='Later', monthly_amount=10_000, start_age=70)]
        result = calculate_income_at_age(65, sources, RATES, 4.5, 0)
        assert result['total_income'] == 0
        assert result['taxable_income'] == 0


class TestAssetIncome:
    """Test dividend and interest income from holdings"""

    def test_dividends(self):
        """Test that 100 000 at a 4% dividend yield gives 4 000"""
        asset = Asset(name='Shares', asset_class='SA Equity', units=1_000, current_price=100, dividend_yield=4)
        assert abs(calculate_dividend_income_from_assets([asset], RATES) - 4_000) < 1e-6

    def test_non_investible_assets_ignored(self):
        house = Asset(name='House', asset_class='Property', asset_type='Non-Investible',
                      units=1, current_price=1_000_000, dividend_yield=5, interest_yield=5)
        assert calculate_dividend_income_from_assets([house], RATES) == 0
        assert calculate_interest_income_from_assets([house], RATES, 45)['gross'] == 0

    def test_interest_taxed_at_marginal_rate(self):
        """Test that 100 000 at 8% with a 45% rate gives 8 000 gross, 3 600 tax, 4 400 net"""
        asset = Asset(name='Money Market', asset_class='Cash', units=1, current_price=100_000, interest_yield=8)
        result = calculate_interest_income_from_assets([asset], RATES, 45)
        assert abs(result['gross'] - 8_000) < 1e-6
        assert abs(result['tax'] - 3_600) < 1e-6
        assert abs(result['net'] - 4_400) < 1e-6

    def test_foreign_dividends_converted(self):
        asset = Asset(name='US ETF', currency='USD', units=100, current_price=100, dividend_yield=2)
        assert abs(calculate_dividend_income_from_assets([asset], RATES) - 200 * 18.5) < 1e-6
