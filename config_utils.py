"""
Configuration utilities for the retirement scenario engine.
Default settings, scenario and profile factories, the optional JSON app
config, and logging setup for command-line use.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from models import (
    Asset,
    ExpenseItem,
    IncomeSource,
    MarketCrash,
    PersonalDetails,
    Profile,
    Scenario,
    Settings,
    UnexpectedExpense,
)
from tax_utils import default_tax_config

logger = logging.getLogger(__name__)

APP_CONFIG_FILE = 'engine_config.json'

DEFAULT_APP_CONFIG = {
    'log_level': 'INFO',
    'profile_path': None,
    'csv_export_dir': None,
}

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def load_app_config(filepath: str = APP_CONFIG_FILE) -> Dict[str, Any]:
    """Load engine_config.json over the defaults; a missing or unreadable file gives the defaults"""
    config = dict(DEFAULT_APP_CONFIG)
    if not os.path.exists(filepath):
        logger.debug(f"{filepath} does not exist, using defaults")
        return config

    try:
        with open(filepath, 'r') as f:
            config.update(json.load(f))
        logger.debug(f"Loaded app config with {len(config)} keys from {filepath}")
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not load {filepath}: {e}")
    return config


def save_app_config(config: Dict[str, Any], filepath: str = APP_CONFIG_FILE) -> None:
    """Save app config to JSON"""
    with open(filepath, 'w') as f:
        json.dump(config, f, indent=2)


def setup_logging(level: Any = 'INFO') -> None:
    """Configure the root logger for command-line runs"""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def get_default_settings(age: int = 55) -> Settings:
    """South African defaults with no platform or advisor fees"""
    return Settings(
        profile=PersonalDetails(age=age),
        tax_config=default_tax_config(),
    )


def get_default_scenario(name: str = 'Base Case') -> Scenario:
    """Scenario using settings-level returns and life phases"""
    return Scenario(name=name)


def get_default_profile(name: str = 'Default', settings: Optional[Settings] = None) -> Profile:
    """Empty profile holding a single base case scenario"""
    return Profile(
        name=name,
        scenarios=[get_default_scenario()],
        settings=settings if settings is not None else get_default_settings(),
    )


def get_sample_profile() -> Profile:
    """A worked example: a 58 year old with a mixed offshore and local portfolio"""
    settings = get_default_settings(age=58)
    settings.profile.name = 'Sample'

    assets = [
        Asset(name='Global Equity ETF', asset_class='Offshore Equity', currency='USD',
              account_type='Taxable', units=4_000, current_price=95.0, cost_price=60.0,
              dividend_yield=1.5),
        Asset(name='SA Top 40', asset_class='SA Equity', currency='ZAR',
              account_type='TFSA', units=20_000, current_price=85.0, cost_price=70.0,
              dividend_yield=3.0),
        Asset(name='Retirement Annuity', asset_class='SA Bonds', currency='ZAR',
              account_type='RA', units=1, current_price=3_500_000, cost_price=2_800_000),
        Asset(name='Money Market', asset_class='Cash', currency='ZAR',
              account_type='Taxable', units=1, current_price=600_000, cost_price=600_000,
              interest_yield=8.0),
        Asset(name='Primary Residence', asset_class='Property', currency='ZAR',
              asset_type='Non-Investible', units=1, current_price=4_000_000, cost_price=2_500_000),
    ]
    income = [
        IncomeSource(name='Consulting', type='Work', monthly_amount=45_000, end_age=62),
        IncomeSource(name='Rental Flat', type='Rental', monthly_amount=9_000, start_age=60),
        IncomeSource(name='Life Annuity', type='Annuity', monthly_amount=12_000, start_age=65,
                     annuity_type='life', escalation_rate=3.0),
    ]
    expenses = [
        ExpenseItem(name='Bond & Levies', category='Housing', amount=14_000),
        ExpenseItem(name='Groceries', category='Food', amount=9_000),
        ExpenseItem(name='Medical Aid', category='Healthcare', amount=7_500),
        ExpenseItem(name='Car & Fuel', category='Transport', amount=5_000),
        ExpenseItem(name='Travel', category='Leisure', amount=80_000, frequency='Annual'),
    ]
    stress = Scenario(
        name='Crash at 67',
        description='40% equity crash two years into retirement plus a medical bill',
        market_crashes=[MarketCrash(age=67, asset_class_drops={'Offshore Equity': 40, 'SA Equity': 40})],
        unexpected_expenses=[UnexpectedExpense(age=75, amount=500_000, description='Medical emergency')],
    )

    return Profile(
        name='Sample',
        assets=assets,
        income=income,
        expenses=expenses,
        scenarios=[get_default_scenario(), stress],
        settings=settings,
    )
