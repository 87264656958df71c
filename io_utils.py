"""
IO utilities for loading/saving profiles and exporting scenario results.
Handles the JSON wire schema (camelCase keys), migration of older saved
profiles to the current schema, and CSV export of trajectories.
"""
import copy
import json
import logging
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from currency_utils import DEFAULT_REPORTING_CURRENCY, migrate_legacy_exchange_rates
from fee_utils import AdvisorFee, FeeStructure, FeeTier, Platform
from models import (
    EQUITY_CLASSES,
    AgeBasedExpensePlan,
    AgeBasedPhase,
    Asset,
    ExpenseItem,
    ExpensePhase,
    ExpensePhases,
    IncomeSource,
    MarketCrash,
    PersonalDetails,
    Profile,
    Scenario,
    Settings,
    UnexpectedExpense,
    WithdrawalRates,
    default_life_phases,
)
from simulation import ScenarioResult
from tax_utils import CGTConfig, InterestExemption, TaxBracket, TaxConfig, TaxRebates, TaxThresholds

logger = logging.getLogger(__name__)

CURRENT_DATA_VERSION = '3.1.0'


class SchemaError(ValueError):
    """Raised when input data cannot be mapped onto the profile schema"""


# External (JSON) key -> dataclass field, per entity
ASSET_FIELDS = {
    'name': 'name',
    'assetClass': 'asset_class',
    'currency': 'currency',
    'assetType': 'asset_type',
    'accountType': 'account_type',
    'units': 'units',
    'currentPrice': 'current_price',
    'costPrice': 'cost_price',
    'dividendYield': 'dividend_yield',
    'interestYield': 'interest_yield',
    'ter': 'ter',
    'expectedReturn': 'expected_return',
    'platform': 'platform',
}
ASSET_REQUIRED = ('name', 'assetClass', 'units', 'currentPrice')

INCOME_FIELDS = {
    'name': 'name',
    'type': 'type',
    'monthlyAmount': 'monthly_amount',
    'currency': 'currency',
    'startAge': 'start_age',
    'endAge': 'end_age',
    'isTaxable': 'is_taxable',
    'isInflationAdjusted': 'is_inflation_adjusted',
    'annuityType': 'annuity_type',
    'capitalValue': 'capital_value',
    'escalationRate': 'escalation_rate',
}
INCOME_REQUIRED = ('name', 'monthlyAmount')

EXPENSE_FIELDS = {
    'name': 'name',
    'category': 'category',
    'amount': 'amount',
    'currency': 'currency',
    'frequency': 'frequency',
}
EXPENSE_REQUIRED = ('name', 'amount')

EXPENSE_PHASE_FIELDS = {
    'name': 'name',
    'ageStart': 'age_start',
    'ageEnd': 'age_end',
    'percentage': 'percentage',
}
EXPENSE_PHASE_REQUIRED = ('ageStart', 'percentage')

# External key -> ExpensePhases attribute, in evaluation order
LIFE_PHASE_KEYS = {
    'working': 'working',
    'activeRetirement': 'active_retirement',
    'slowerPace': 'slower_pace',
    'laterYears': 'later_years',
}

AGE_BASED_PHASE_FIELDS = {
    'key': 'key',
    'name': 'name',
    'startAge': 'start_age',
    'endAge': 'end_age',
    'categoryExpenses': 'category_expenses',
}
AGE_BASED_PHASE_REQUIRED = ('key', 'startAge', 'endAge')

CRASH_FIELDS = {
    'age': 'age',
    'assetClassDrops': 'asset_class_drops',
    'description': 'description',
}
CRASH_REQUIRED = ('age',)

UNEXPECTED_EXPENSE_FIELDS = {
    'age': 'age',
    'amount': 'amount',
    'description': 'description',
}
UNEXPECTED_EXPENSE_REQUIRED = ('age', 'amount')

SCENARIO_FIELDS = {
    'name': 'name',
    'description': 'description',
    'inflationRate': 'inflation_rate',
    'retirementAge': 'retirement_age',
    'lifeExpectancy': 'life_expectancy',
    'monthlySavings': 'monthly_savings',
    'useExpensesModule': 'use_expenses_module',
    'annualExpenses': 'annual_expenses',
    'useCustomReturns': 'use_custom_returns',
    'expectedReturns': 'expected_returns',
    'useCurrencyMovement': 'use_currency_movement',
    'currencyMovement': 'currency_movement',
    'useCustomExpensePhases': 'use_custom_expense_phases',
    'results': 'results',
    'lastRun': 'last_run',
}
# Nested scenario keys handled separately
SCENARIO_NESTED = ('expensePhases', 'marketCrashes', 'unexpectedExpenses')
SCENARIO_REQUIRED = ('name',)

PERSONAL_FIELDS = {
    'name': 'name',
    'age': 'age',
    'retirementAge': 'retirement_age',
    'lifeExpectancy': 'life_expectancy',
    'annualExpenses': 'annual_expenses',
    'marginalTaxRate': 'marginal_tax_rate',
}
PERSONAL_REQUIRED = ('age',)

SETTINGS_FIELDS = {
    'reportingCurrency': 'reporting_currency',
    'exchangeRates': 'exchange_rates',
    'expectedReturns': 'expected_returns',
    'inflation': 'inflation',
}
SETTINGS_NESTED = ('profile', 'lifePhases', 'withdrawalRates', 'taxConfig', 'platforms', 'advisorFee')

WITHDRAWAL_RATE_FIELDS = {
    'conservative': 'conservative',
    'safe': 'safe',
    'aggressive': 'aggressive',
}

TAX_BRACKET_FIELDS = {
    'min': 'min',
    'max': 'max',
    'rate': 'rate',
    'baseAmount': 'base_amount',
}
TAX_BRACKET_REQUIRED = ('min', 'rate')

TAX_REBATE_FIELDS = {'primary': 'primary', 'secondary': 'secondary', 'tertiary': 'tertiary'}
TAX_THRESHOLD_FIELDS = {'under65': 'under65', 'age65to74': 'age65to74', 'age75plus': 'age75plus'}
CGT_FIELDS = {'inclusionRate': 'inclusion_rate', 'annualExclusion': 'annual_exclusion'}
INTEREST_EXEMPTION_FIELDS = {'under65': 'under65', 'age65plus': 'age65plus'}
TAX_CONFIG_FIELDS = {
    'taxYear': 'tax_year',
    'dividendWithholdingTax': 'dividend_withholding_tax',
}
TAX_CONFIG_NESTED = ('incomeTaxBrackets', 'taxRebates', 'taxThresholds', 'cgt', 'interestExemption')

FEE_STRUCTURE_FIELDS = {
    'type': 'type',
    'rate': 'rate',
    'amount': 'amount',
    'currency': 'currency',
    'frequency': 'frequency',
}
FEE_STRUCTURE_REQUIRED = ('type',)
FEE_TIER_FIELDS = {'upTo': 'up_to', 'rate': 'rate'}
FEE_TIER_REQUIRED = ('rate',)

PLATFORM_FIELDS = {'id': 'id', 'name': 'name'}
PLATFORM_REQUIRED = ('id',)

ADVISOR_FEE_FIELDS = {
    'enabled': 'enabled',
    'type': 'type',
    'amount': 'amount',
    'currency': 'currency',
}

PROFILE_FIELDS = {
    'name': 'name',
    'dataVersion': 'data_version',
}
PROFILE_NESTED = ('assets', 'income', 'expenses', 'ageBasedExpensePlan', 'scenarios', 'settings')


# ---------------------------------------------------------------------------
# Generic mapping helpers
# ---------------------------------------------------------------------------

def _map_fields(entity: str,
                data: Dict[str, Any],
                field_map: Dict[str, str],
                required: Tuple[str, ...] = (),
                nested: Tuple[str, ...] = ()) -> Dict[str, Any]:
    """Translate external keys to constructor kwargs, raising SchemaError for missing required keys"""
    if not isinstance(data, dict):
        raise SchemaError(f"{entity}: expected an object, got {type(data).__name__}")

    for key in required:
        if data.get(key) is None:
            raise SchemaError(f"{entity}: missing required field '{key}'")

    kwargs = {}
    for key, value in data.items():
        if key in field_map:
            kwargs[field_map[key]] = value
        elif key not in nested:
            logger.debug(f"{entity}: ignoring unknown field '{key}'")
    return kwargs


def _build(cls, entity: str, data: Dict[str, Any], field_map: Dict[str, str],
           required: Tuple[str, ...] = (), nested: Tuple[str, ...] = (), **extra):
    kwargs = _map_fields(entity, data, field_map, required, nested)
    kwargs.update(extra)
    try:
        return cls(**kwargs)
    except (TypeError, ValueError) as e:
        raise SchemaError(f"{entity}: {e}") from e


def _dump(obj, field_map: Dict[str, str]) -> Dict[str, Any]:
    return {key: copy.deepcopy(getattr(obj, attr)) for key, attr in field_map.items()}


def _build_list(items: Optional[List], builder: Callable, entity: str) -> List:
    if items is None:
        return []
    if not isinstance(items, list):
        raise SchemaError(f"{entity}: expected a list, got {type(items).__name__}")
    return [builder(item) for item in items]


# ---------------------------------------------------------------------------
# Entity conversion
# ---------------------------------------------------------------------------

def asset_from_dict(data: Dict[str, Any]) -> Asset:
    return _build(Asset, 'Asset', data, ASSET_FIELDS, ASSET_REQUIRED)


def income_from_dict(data: Dict[str, Any]) -> IncomeSource:
    return _build(IncomeSource, 'IncomeSource', data, INCOME_FIELDS, INCOME_REQUIRED)


def expense_from_dict(data: Dict[str, Any]) -> ExpenseItem:
    return _build(ExpenseItem, 'ExpenseItem', data, EXPENSE_FIELDS, EXPENSE_REQUIRED)


def expense_phases_from_dict(data: Optional[Dict[str, Any]]) -> ExpensePhases:
    if data is None:
        return default_life_phases()

    bands = {}
    for key, attr in LIFE_PHASE_KEYS.items():
        band = data.get(key)
        if band is not None:
            bands[attr] = _build(ExpensePhase, f"ExpensePhase '{key}'", band,
                                 EXPENSE_PHASE_FIELDS, EXPENSE_PHASE_REQUIRED)
    for key in data:
        if key not in LIFE_PHASE_KEYS:
            logger.debug(f"ExpensePhases: ignoring unknown phase '{key}'")
    return ExpensePhases(**bands)


def expense_phases_to_dict(phases: ExpensePhases) -> Dict[str, Any]:
    result = {}
    for key, attr in LIFE_PHASE_KEYS.items():
        band = getattr(phases, attr)
        if band is not None:
            result[key] = _dump(band, EXPENSE_PHASE_FIELDS)
    return result


def age_based_plan_from_dict(data: Optional[Dict[str, Any]]) -> AgeBasedExpensePlan:
    if data is None:
        return AgeBasedExpensePlan()
    phases = _build_list(
        data.get('phases'),
        lambda item: _build(AgeBasedPhase, 'AgeBasedPhase', item,
                            AGE_BASED_PHASE_FIELDS, AGE_BASED_PHASE_REQUIRED),
        'AgeBasedExpensePlan.phases')
    return AgeBasedExpensePlan(enabled=bool(data.get('enabled', False)), phases=phases)


def age_based_plan_to_dict(plan: AgeBasedExpensePlan) -> Dict[str, Any]:
    return {
        'enabled': plan.enabled,
        'phases': [_dump(phase, AGE_BASED_PHASE_FIELDS) for phase in plan.phases],
    }


def scenario_from_dict(data: Dict[str, Any]) -> Scenario:
    """Build a Scenario from its canonical (current version) wire form"""
    crashes = _build_list(
        data.get('marketCrashes'),
        lambda item: _build(MarketCrash, 'MarketCrash', item, CRASH_FIELDS, CRASH_REQUIRED),
        'Scenario.marketCrashes')
    unexpected = _build_list(
        data.get('unexpectedExpenses'),
        lambda item: _build(UnexpectedExpense, 'UnexpectedExpense', item,
                            UNEXPECTED_EXPENSE_FIELDS, UNEXPECTED_EXPENSE_REQUIRED),
        'Scenario.unexpectedExpenses')

    return _build(Scenario, 'Scenario', data, SCENARIO_FIELDS, SCENARIO_REQUIRED, SCENARIO_NESTED,
                  expense_phases=expense_phases_from_dict(data.get('expensePhases')),
                  market_crashes=crashes,
                  unexpected_expenses=unexpected)


def scenario_to_dict(scenario: Scenario) -> Dict[str, Any]:
    result = _dump(scenario, SCENARIO_FIELDS)
    result['expensePhases'] = expense_phases_to_dict(scenario.expense_phases)
    result['marketCrashes'] = [_dump(crash, CRASH_FIELDS) for crash in scenario.market_crashes]
    result['unexpectedExpenses'] = [_dump(expense, UNEXPECTED_EXPENSE_FIELDS)
                                    for expense in scenario.unexpected_expenses]
    return result


def _fee_structure_from_dict(data: Optional[Dict[str, Any]]) -> Optional[FeeStructure]:
    if data is None:
        return None
    tiers = _build_list(
        data.get('tiers'),
        lambda item: _build(FeeTier, 'FeeTier', item, FEE_TIER_FIELDS, FEE_TIER_REQUIRED),
        'FeeStructure.tiers')
    return _build(FeeStructure, 'FeeStructure', data, FEE_STRUCTURE_FIELDS,
                  FEE_STRUCTURE_REQUIRED, ('tiers',), tiers=tiers)


def _platform_from_dict(data: Dict[str, Any]) -> Platform:
    return _build(Platform, 'Platform', data, PLATFORM_FIELDS, PLATFORM_REQUIRED, ('feeStructure',),
                  fee_structure=_fee_structure_from_dict(data.get('feeStructure')))


def _platform_to_dict(platform: Platform) -> Dict[str, Any]:
    result = _dump(platform, PLATFORM_FIELDS)
    fee_structure = platform.fee_structure
    if fee_structure is not None:
        result['feeStructure'] = _dump(fee_structure, FEE_STRUCTURE_FIELDS)
        result['feeStructure']['tiers'] = [_dump(tier, FEE_TIER_FIELDS) for tier in fee_structure.tiers]
    else:
        result['feeStructure'] = None
    return result


def tax_config_from_dict(data: Optional[Dict[str, Any]]) -> TaxConfig:
    if data is None:
        return TaxConfig()

    extra = {}
    if data.get('incomeTaxBrackets') is not None:
        extra['income_tax_brackets'] = _build_list(
            data['incomeTaxBrackets'],
            lambda item: _build(TaxBracket, 'TaxBracket', item, TAX_BRACKET_FIELDS, TAX_BRACKET_REQUIRED),
            'TaxConfig.incomeTaxBrackets')
    nested_builders = (
        ('taxRebates', 'tax_rebates', TaxRebates, TAX_REBATE_FIELDS),
        ('taxThresholds', 'tax_thresholds', TaxThresholds, TAX_THRESHOLD_FIELDS),
        ('cgt', 'cgt', CGTConfig, CGT_FIELDS),
        ('interestExemption', 'interest_exemption', InterestExemption, INTEREST_EXEMPTION_FIELDS),
    )
    for key, attr, cls, field_map in nested_builders:
        if data.get(key) is not None:
            extra[attr] = _build(cls, f"TaxConfig.{key}", data[key], field_map)

    return _build(TaxConfig, 'TaxConfig', data, TAX_CONFIG_FIELDS, (), TAX_CONFIG_NESTED, **extra)


def tax_config_to_dict(tax_config: TaxConfig) -> Dict[str, Any]:
    result = _dump(tax_config, TAX_CONFIG_FIELDS)
    result['incomeTaxBrackets'] = [_dump(bracket, TAX_BRACKET_FIELDS)
                                   for bracket in tax_config.income_tax_brackets]
    result['taxRebates'] = _dump(tax_config.tax_rebates, TAX_REBATE_FIELDS)
    result['taxThresholds'] = _dump(tax_config.tax_thresholds, TAX_THRESHOLD_FIELDS)
    result['cgt'] = _dump(tax_config.cgt, CGT_FIELDS)
    result['interestExemption'] = _dump(tax_config.interest_exemption, INTEREST_EXEMPTION_FIELDS)
    return result


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    extra = {
        'life_phases': expense_phases_from_dict(data.get('lifePhases')),
        'tax_config': tax_config_from_dict(data.get('taxConfig')),
        'platforms': _build_list(data.get('platforms'), _platform_from_dict, 'Settings.platforms'),
    }
    if data.get('profile') is not None:
        extra['profile'] = _build(PersonalDetails, 'Settings.profile', data['profile'],
                                  PERSONAL_FIELDS, PERSONAL_REQUIRED)
    if data.get('withdrawalRates') is not None:
        extra['withdrawal_rates'] = _build(WithdrawalRates, 'Settings.withdrawalRates',
                                           data['withdrawalRates'], WITHDRAWAL_RATE_FIELDS)
    if data.get('advisorFee') is not None:
        extra['advisor_fee'] = _build(AdvisorFee, 'Settings.advisorFee', data['advisorFee'], ADVISOR_FEE_FIELDS)

    return _build(Settings, 'Settings', data, SETTINGS_FIELDS, (), SETTINGS_NESTED, **extra)


def settings_to_dict(settings: Settings) -> Dict[str, Any]:
    result = _dump(settings, SETTINGS_FIELDS)
    result['profile'] = _dump(settings.profile, PERSONAL_FIELDS)
    result['lifePhases'] = expense_phases_to_dict(settings.life_phases)
    result['withdrawalRates'] = _dump(settings.withdrawal_rates, WITHDRAWAL_RATE_FIELDS)
    result['taxConfig'] = tax_config_to_dict(settings.tax_config)
    result['platforms'] = [_platform_to_dict(platform) for platform in settings.platforms]
    result['advisorFee'] = _dump(settings.advisor_fee, ADVISOR_FEE_FIELDS)
    return result


def profile_from_dict(data: Dict[str, Any]) -> Profile:
    """
    Build a Profile from a current-version dict.

    Older saved profiles should go through migrate_profile_dict first;
    load_profile_json does this automatically.
    """
    settings = settings_from_dict(data['settings']) if data.get('settings') is not None else None
    return _build(
        Profile, 'Profile', data, PROFILE_FIELDS, (), PROFILE_NESTED,
        assets=_build_list(data.get('assets'), asset_from_dict, 'Profile.assets'),
        income=_build_list(data.get('income'), income_from_dict, 'Profile.income'),
        expenses=_build_list(data.get('expenses'), expense_from_dict, 'Profile.expenses'),
        age_based_expense_plan=age_based_plan_from_dict(data.get('ageBasedExpensePlan')),
        scenarios=_build_list(data.get('scenarios'), scenario_from_dict, 'Profile.scenarios'),
        settings=settings,
    )


def profile_to_dict(profile: Profile) -> Dict[str, Any]:
    result = _dump(profile, PROFILE_FIELDS)
    result['assets'] = [_dump(asset, ASSET_FIELDS) for asset in profile.assets]
    result['income'] = [_dump(source, INCOME_FIELDS) for source in profile.income]
    result['expenses'] = [_dump(item, EXPENSE_FIELDS) for item in profile.expenses]
    result['ageBasedExpensePlan'] = age_based_plan_to_dict(profile.age_based_expense_plan)
    result['scenarios'] = [scenario_to_dict(scenario) for scenario in profile.scenarios]
    result['settings'] = settings_to_dict(profile.settings) if profile.settings is not None else None
    return result


# ---------------------------------------------------------------------------
# Versioned migration
# ---------------------------------------------------------------------------

def detect_version(data: Dict[str, Any]) -> str:
    """Schema version of a raw profile dict"""
    if data.get('dataVersion'):
        return data['dataVersion']

    settings = data.get('settings') or {}
    if (settings.get('currency') or {}).get('exchangeRates'):
        return '2.x'
    if _has_3_0_0_fields(data):
        return '3.0.0'
    return CURRENT_DATA_VERSION


def _has_3_0_0_fields(data: Dict[str, Any]) -> bool:
    """Unversioned profiles saved before 3.1.0 still carry these shapes"""
    settings = data.get('settings') or {}
    if data.get('expenseCategories') or settings.get('retirementExpensePhases'):
        return True
    if any('monthlyAmount' in expense for expense in data.get('expenses') or []):
        return True
    for scenario in data.get('scenarios') or []:
        if any('dropPercentage' in crash for crash in scenario.get('marketCrashes') or []):
            return True
    plan = data.get('ageBasedExpensePlan') or {}
    return any(_is_subcategory_phase(phase) for phase in plan.get('phases') or [])


def _is_subcategory_phase(phase: Dict[str, Any]) -> bool:
    return bool(phase.get('expenses')) and not phase.get('categoryExpenses')


def _migrate_2x_to_3_0_0(data: Dict[str, Any]) -> Dict[str, Any]:
    """Pair-keyed exchange rates under settings.currency become settings.exchangeRates"""
    settings = data.setdefault('settings', {})
    reporting_currency = settings.get('reportingCurrency') or DEFAULT_REPORTING_CURRENCY
    settings['reportingCurrency'] = reporting_currency

    legacy_currency = settings.pop('currency', None) or {}
    legacy_rates = legacy_currency.get('exchangeRates') or {}
    existing = settings.get('exchangeRates') or {}
    if not existing or any('/' in key for key in existing):
        settings['exchangeRates'] = migrate_legacy_exchange_rates({**legacy_rates, **existing}, reporting_currency)

    for expense in data.get('expenses') or []:
        expense.setdefault('frequency', 'Monthly')
        expense.setdefault('currency', reporting_currency)
        expense.setdefault('category', 'General')

    data['dataVersion'] = '3.0.0'
    return data


def _migrate_age_based_phase(phase: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Nested {category: {subcategory: amount}} becomes monthly category totals"""
    if not _is_subcategory_phase(phase):
        return phase

    category_expenses = {}
    for category, subcategories in phase['expenses'].items():
        if isinstance(subcategories, dict):
            total = sum(amount or 0 for amount in subcategories.values())
            if total > 0:
                category_expenses[category] = total

    defaults = default_life_phases().ordered()
    default = defaults[min(index, len(defaults) - 1)]
    key = list(LIFE_PHASE_KEYS)[min(index, len(LIFE_PHASE_KEYS) - 1)]
    return {
        'key': phase.get('key') or key,
        'name': phase.get('name') or default.name,
        'startAge': phase.get('startAge') or default.age_start,
        'endAge': phase.get('endAge') or default.age_end,
        'categoryExpenses': category_expenses,
    }


def _migrate_crash(crash: Dict[str, Any]) -> Dict[str, Any]:
    if 'dropPercentage' in crash:
        drop = crash.pop('dropPercentage')
        if not crash.get('assetClassDrops'):
            crash['assetClassDrops'] = {asset_class: drop for asset_class in EQUITY_CLASSES}
    return crash


def _migrate_3_0_0_to_3_1_0(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Hierarchical expense categories become flat expense items, legacy
    retirement phases become life phases, equity-only crashes become
    per-asset-class drops, and subcategory-level age-based plan phases
    become category totals.
    """
    categories = data.pop('expenseCategories', None) or []
    if categories:
        flat = list(data.get('expenses') or [])
        for category in categories:
            for sub in category.get('subcategories') or []:
                amount = sub.get('amount', sub.get('monthlyAmount', 0))
                flat.append({
                    'name': sub.get('name', ''),
                    'category': category.get('name', 'Other'),
                    'amount': amount,
                    'currency': sub.get('currency', DEFAULT_REPORTING_CURRENCY),
                    'frequency': sub.get('frequency', 'Monthly'),
                })
        data['expenses'] = flat

    for expense in data.get('expenses') or []:
        if 'monthlyAmount' in expense:
            monthly = expense.pop('monthlyAmount')
            expense.setdefault('amount', monthly)

    settings = data.get('settings') or {}
    legacy_phases = settings.pop('retirementExpensePhases', None)
    if legacy_phases and not settings.get('lifePhases'):
        life_phases = expense_phases_to_dict(default_life_phases())
        for legacy_key, key in (('phase1', 'activeRetirement'), ('phase2', 'slowerPace'), ('phase3', 'laterYears')):
            if legacy_phases.get(legacy_key):
                life_phases[key] = {**life_phases[key], **legacy_phases[legacy_key]}
        settings['lifePhases'] = life_phases

    for scenario in data.get('scenarios') or []:
        scenario['marketCrashes'] = [_migrate_crash(crash) for crash in scenario.get('marketCrashes') or []]

    plan = data.get('ageBasedExpensePlan') or {}
    if any(_is_subcategory_phase(phase) for phase in plan.get('phases') or []):
        plan['phases'] = [_migrate_age_based_phase(phase, index)
                          for index, phase in enumerate(plan['phases'])]

    data['dataVersion'] = '3.1.0'
    return data


MIGRATIONS = {
    '2.x': _migrate_2x_to_3_0_0,
    '3.0.0': _migrate_3_0_0_to_3_1_0,
}


def migrate_profile_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Bring a raw profile dict up to CURRENT_DATA_VERSION.

    Args:
        data: Profile dict as loaded from JSON (left unmodified)

    Returns:
        Migrated copy
    """
    migrated = copy.deepcopy(data)
    version = detect_version(migrated)
    start_version = version

    while version != CURRENT_DATA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise SchemaError(f"Profile: unsupported data version '{version}'")
        migrated = step(migrated)
        version = migrated['dataVersion']

    if start_version != CURRENT_DATA_VERSION:
        logger.info(f"Migrated profile from {start_version} to {CURRENT_DATA_VERSION}")
    return migrated


# ---------------------------------------------------------------------------
# Files and exports
# ---------------------------------------------------------------------------

def load_profile_json(filepath: str) -> Profile:
    """
    Load a profile from a JSON file, migrating older versions.

    Args:
        filepath: Path to JSON file

    Returns:
        Profile object
    """
    with open(filepath, 'r') as f:
        data = json.load(f)

    return profile_from_dict(migrate_profile_dict(data))


def save_profile_json(profile: Profile, filepath: str) -> None:
    """
    Save a profile to a JSON file in the current schema.

    Args:
        profile: Profile to save
        filepath: Path to save JSON file
    """
    with open(filepath, 'w') as f:
        json.dump(profile_to_dict(profile), f, indent=2)


def trajectory_to_dataframe(result: ScenarioResult) -> pd.DataFrame:
    """One row per simulated age"""
    return pd.DataFrame([asdict(point) for point in result.trajectory])


def export_trajectory_csv(result: ScenarioResult) -> str:
    """
    Export a scenario trajectory to a CSV string.

    Args:
        result: ScenarioResult from run_scenario

    Returns:
        CSV string
    """
    df = trajectory_to_dataframe(result)
    return df.to_csv(index=False)


def export_results_json(results: Dict[str, ScenarioResult]) -> str:
    """Export results keyed by scenario name in their camelCase wire form"""
    return json.dumps({name: result.to_dict() for name, result in results.items()}, indent=2, default=str)


def record_scenario_run(scenario: Scenario, result: ScenarioResult) -> Scenario:
    """Copy of the scenario carrying the run's results and timestamp"""
    last_run = result.run_at or datetime.now(timezone.utc).isoformat()
    return replace(scenario, results=result.to_dict(), last_run=last_run)


CURRENCY_SYMBOLS = {
    'ZAR': 'R',
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
}


def format_currency(value: float,
                    currency: str = DEFAULT_REPORTING_CURRENCY,
                    precision: int = 0) -> str:
    """
    Format currency values for display.

    Args:
        value: Numeric value to format
        currency: Currency code, used for the symbol
        precision: Number of decimal places

    Returns:
        Formatted string, e.g. "R1.5M"
    """
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    sign = '-' if value < 0 else ''
    magnitude = abs(value)

    if magnitude >= 1_000_000:
        return f"{sign}{symbol}{magnitude/1_000_000:.{precision}f}M"
    elif magnitude >= 1_000:
        return f"{sign}{symbol}{magnitude/1_000:.{precision}f}K"
    return f"{sign}{symbol}{magnitude:.{precision}f}"
