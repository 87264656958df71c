"""
Tests for profile persistence, schema migration and result export.
"""
import json

import pytest
from config_utils import get_default_profile, get_sample_profile
from io_utils import (
    CURRENT_DATA_VERSION,
    SchemaError,
    asset_from_dict,
    detect_version,
    export_results_json,
    export_trajectory_csv,
    format_currency,
    load_profile_json,
    migrate_profile_dict,
    profile_from_dict,
    profile_to_dict,
    record_scenario_run,
    save_profile_json,
    scenario_from_dict,
    trajectory_to_dataframe,
)
from models import Scenario
from simulation import run_scenario


def legacy_profile():
    """A 2.x profile: pair-keyed rates, category expenses, phase1-3 and equity-only crashes"""
    return {
        'name': 'Legacy',
        'assets': [{'name': 'ETF', 'assetClass': 'Offshore Equity', 'currency': 'USD',
                    'units': 100, 'currentPrice': 50}],
        'expenseCategories': [
            {'name': 'Housing', 'subcategories': [{'name': 'Rent', 'monthlyAmount': 12_000}]},
        ],
        'scenarios': [{'name': 'Crash', 'marketCrashes': [{'age': 70, 'dropPercentage': 30}]}],
        'settings': {
            'profile': {'age': 60},
            'currency': {'exchangeRates': {'USD/ZAR': 18.0, 'EUR/USD': 1.1}},
            'retirementExpensePhases': {'phase2': {'percentage': 70}},
        },
    }


class TestProfileRoundTrip:
    """Test dict and JSON persistence"""

    def test_dict_round_trip(self):
        profile = get_sample_profile()
        assert profile_from_dict(profile_to_dict(profile)) == profile

    def test_json_file_round_trip(self, tmp_path):
        profile = get_sample_profile()
        path = tmp_path / 'profile.json'
        save_profile_json(profile, str(path))
        loaded = load_profile_json(str(path))
        assert loaded == profile

    def test_saved_file_uses_camel_case(self, tmp_path):
        path = tmp_path / 'profile.json'
        save_profile_json(get_default_profile(), str(path))
        data = json.loads(path.read_text())
        assert data['dataVersion'] == CURRENT_DATA_VERSION
        assert 'ageBasedExpensePlan' in data
        assert 'exchangeRates' in data['settings']

    def test_missing_settings_kept_as_none(self):
        profile = profile_from_dict({'name': 'Bare'})
        assert profile.settings is None
        assert profile.assets == []


class TestSchemaValidation:
    """Test that malformed input raises SchemaError"""

    def test_missing_required_field(self):
        with pytest.raises(SchemaError, match="missing required field 'units'"):
            asset_from_dict({'name': 'ETF', 'assetClass': 'Cash', 'currentPrice': 1})

    def test_invalid_value(self):
        with pytest.raises(SchemaError, match='negative units'):
            asset_from_dict({'name': 'ETF', 'assetClass': 'Cash', 'units': -1, 'currentPrice': 1})

    def test_unknown_fields_ignored(self):
        asset = asset_from_dict({'name': 'ETF', 'assetClass': 'Cash', 'units': 1,
                                 'currentPrice': 1, 'colour': 'blue'})
        assert asset.name == 'ETF'

    def test_list_expected(self):
        with pytest.raises(SchemaError, match='expected a list'):
            profile_from_dict({'name': 'Bad', 'assets': {'name': 'ETF'}})

    def test_scenario_life_expectancy_before_retirement(self):
        with pytest.raises(SchemaError):
            scenario_from_dict({'name': 'Bad', 'retirementAge': 70, 'lifeExpectancy': 60})

    def test_crash_drop_out_of_range(self):
        with pytest.raises(SchemaError):
            scenario_from_dict({'name': 'Bad', 'marketCrashes': [{'age': 70, 'assetClassDrops': {'Cash': 150}}]})


class TestMigration:
    """Test upgrading older saved profiles"""

    def test_detect_version(self):
        assert detect_version(legacy_profile()) == '2.x'
        assert detect_version({'dataVersion': '3.0.0'}) == '3.0.0'
        assert detect_version({}) == CURRENT_DATA_VERSION

    def test_legacy_exchange_rates(self):
        migrated = migrate_profile_dict(legacy_profile())
        assert migrated['dataVersion'] == CURRENT_DATA_VERSION
        assert migrated['settings']['exchangeRates'] == {'USD': 18.0}
        assert 'currency' not in migrated['settings']

    def test_expense_categories_flattened(self):
        migrated = migrate_profile_dict(legacy_profile())
        assert migrated['expenses'] == [{'name': 'Rent', 'category': 'Housing', 'amount': 12_000,
                                         'currency': 'ZAR', 'frequency': 'Monthly'}]
        assert 'expenseCategories' not in migrated

    def test_legacy_crash_hits_equities(self):
        migrated = migrate_profile_dict(legacy_profile())
        crash = migrated['scenarios'][0]['marketCrashes'][0]
        assert crash['assetClassDrops'] == {'Offshore Equity': 30, 'SA Equity': 30}
        assert 'dropPercentage' not in crash

    def test_legacy_phases(self):
        migrated = migrate_profile_dict(legacy_profile())
        life_phases = migrated['settings']['lifePhases']
        assert life_phases['slowerPace']['percentage'] == 70
        assert life_phases['activeRetirement']['percentage'] == 100

    def test_expense_monthly_amount_renamed(self):
        data = {'dataVersion': '3.0.0', 'expenses': [{'name': 'Food', 'monthlyAmount': 5_000}]}
        migrated = migrate_profile_dict(data)
        assert migrated['expenses'][0]['amount'] == 5_000
        assert 'monthlyAmount' not in migrated['expenses'][0]

    def test_unversioned_profile_with_old_fields(self):
        """Test that a profile without dataVersion but with pre-3.1.0 shapes is still migrated"""
        data = {
            'name': 'Unversioned',
            'expenseCategories': [
                {'name': 'Living', 'subcategories': [{'name': 'Groceries', 'monthlyAmount': 50_000}]},
            ],
            'scenarios': [{'name': 'Crash', 'marketCrashes': [{'age': 66, 'dropPercentage': 40}]}],
            'settings': {'profile': {'age': 65}},
        }
        assert detect_version(data) == '3.0.0'
        profile = profile_from_dict(migrate_profile_dict(data))
        assert [expense.annual_amount for expense in profile.expenses] == [600_000]
        crash = profile.scenarios[0].market_crashes[0]
        assert crash.asset_class_drops == {'Offshore Equity': 40, 'SA Equity': 40}

    def test_age_based_plan_subcategories_summed(self):
        """Test that 3.0.0 plan phases keyed by subcategory become monthly category totals"""
        data = {
            'dataVersion': '3.0.0',
            'name': 'Planned',
            'assets': [{'name': 'Cash', 'assetClass': 'Cash', 'accountType': 'TFSA',
                        'units': 1, 'currentPrice': 1_000_000, 'expectedReturn': 0}],
            'ageBasedExpensePlan': {
                'enabled': True,
                'phases': [{'startAge': 65, 'endAge': 72, 'expenses': {'Living': {'Food': 50_000}}}],
            },
            'settings': {'profile': {'age': 65}},
        }
        migrated = migrate_profile_dict(data)
        phase = migrated['ageBasedExpensePlan']['phases'][0]
        assert phase['categoryExpenses'] == {'Living': 50_000}
        assert phase['startAge'] == 65
        assert 'expenses' not in phase

        profile = profile_from_dict(migrated)
        result = run_scenario(Scenario(name='Plan', retirement_age=65, life_expectancy=66, inflation_rate=0.0),
                              profile)
        assert result.trajectory[0].expenses == pytest.approx(600_000)

    def test_input_not_modified(self):
        data = legacy_profile()
        migrate_profile_dict(data)
        assert data == legacy_profile()

    def test_unsupported_version(self):
        with pytest.raises(SchemaError, match='unsupported data version'):
            migrate_profile_dict({'dataVersion': '9.9.9'})

    def test_load_legacy_file(self, tmp_path):
        path = tmp_path / 'legacy.json'
        path.write_text(json.dumps(legacy_profile()))
        profile = load_profile_json(str(path))
        assert profile.settings.exchange_rates == {'USD': 18.0}
        assert profile.expenses[0].annual_amount == 144_000
        assert profile.scenarios[0].market_crashes[0].asset_class_drops['SA Equity'] == 30
        assert profile.data_version == CURRENT_DATA_VERSION


class TestResultExport:
    """Test CSV and JSON export of scenario results"""

    @pytest.fixture
    def result(self):
        profile = get_sample_profile()
        return run_scenario(profile.scenarios[0], profile)

    def test_dataframe_one_row_per_age(self, result):
        df = trajectory_to_dataframe(result)
        assert len(df) == len(result.trajectory)
        assert list(df['age']) == [point.age for point in result.trajectory]

    def test_csv_export(self, result):
        csv_data = export_trajectory_csv(result)
        lines = csv_data.strip().splitlines()
        assert len(lines) == len(result.trajectory) + 1
        assert 'net_worth' in lines[0]
        assert 'end_value' in lines[0]

    def test_results_json(self, result):
        data = json.loads(export_results_json({'Base Case': result}))
        assert data['Base Case']['scenarioName'] == 'Base Case'
        assert len(data['Base Case']['trajectory']) == len(result.trajectory)

    def test_record_scenario_run(self, result):
        scenario = Scenario(name='Base Case')
        recorded = record_scenario_run(scenario, result)
        assert recorded.results['finalValue'] == result.final_value
        assert recorded.last_run == result.run_at
        assert scenario.results is None


class TestFormatCurrency:
    """Test display formatting"""

    def test_millions(self):
        assert format_currency(1_500_000, 'ZAR', 1) == 'R1.5M'

    def test_thousands(self):
        assert format_currency(3_000, 'USD') == '$3K'

    def test_small_values(self):
        assert format_currency(950, 'GBP') == '£950'

    def test_negative(self):
        assert format_currency(-1_500_000, 'ZAR', 1) == '-R1.5M'

    def test_unknown_currency(self):
        assert format_currency(2_000_000, 'JPY') == 'JPY 2M'
