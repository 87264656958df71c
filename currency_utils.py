"""
Currency conversion and portfolio valuation helpers.

Exchange rates are stored as "1 unit of foreign currency = X units of the
reporting currency", e.g. {'USD': 18.50} when reporting in ZAR.
"""
import logging
import math
from typing import Dict, Iterable, List, Optional

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_REPORTING_CURRENCY = 'ZAR'

DEFAULT_EXCHANGE_RATES = {
    'USD': 18.50,
    'EUR': 19.80,
    'GBP': 23.20,
}


def _is_usable_rate(rate) -> bool:
    if rate is None:
        return False
    try:
        rate = float(rate)
    except (TypeError, ValueError):
        return False
    return math.isfinite(rate) and rate > 0


def _is_blank_amount(amount) -> bool:
    return not amount or (isinstance(amount, float) and math.isnan(amount))


def validate_exchange_rates(currencies: Iterable[str],
                            reporting_currency: str,
                            exchange_rates: Dict[str, float]) -> Dict:
    """
    Check that every currency other than the reporting one has a usable rate.

    Returns:
        {'valid': bool, 'missing': [currency codes]}
    """
    missing = []
    for currency in currencies:
        if currency == reporting_currency or currency in missing:
            continue
        if not _is_usable_rate(exchange_rates.get(currency)):
            missing.append(currency)

    return {'valid': not missing, 'missing': missing}


def get_exchange_rate_with_fallback(currency: str, exchange_rates: Dict[str, float]) -> Dict:
    """
    Rate for a currency, falling back to the built-in defaults.

    Returns:
        {'rate': float, 'is_default': bool}. As a last resort the rate is 1.0,
        which is logged as an error.
    """
    user_rate = exchange_rates.get(currency) if exchange_rates else None
    if _is_usable_rate(user_rate):
        return {'rate': float(user_rate), 'is_default': False}

    default_rate = DEFAULT_EXCHANGE_RATES.get(currency)
    if _is_usable_rate(default_rate):
        logger.warning(f"Exchange rate for {currency} not configured, using default: {default_rate}")
        return {'rate': default_rate, 'is_default': True}

    logger.error(f"No exchange rate for {currency} and no default available, using 1:1")
    return {'rate': 1.0, 'is_default': True}


def to_reporting_currency(amount: float,
                          from_currency: str,
                          reporting_currency: str,
                          exchange_rates: Dict[str, float]) -> float:
    """Convert an amount in from_currency into the reporting currency"""
    if _is_blank_amount(amount):
        return 0.0
    if from_currency == reporting_currency:
        return amount

    rate = get_exchange_rate_with_fallback(from_currency, exchange_rates)['rate']
    return amount * rate


def from_reporting_currency(amount: float,
                            to_currency: str,
                            reporting_currency: str,
                            exchange_rates: Dict[str, float]) -> float:
    """Convert an amount in the reporting currency into to_currency"""
    if _is_blank_amount(amount):
        return 0.0
    if to_currency == reporting_currency:
        return amount

    rate = get_exchange_rate_with_fallback(to_currency, exchange_rates)['rate']
    return amount / rate


def convert_currency(amount: float,
                     from_currency: str,
                     to_currency: str,
                     reporting_currency: str,
                     exchange_rates: Dict[str, float]) -> float:
    """Convert between two currencies via the reporting currency"""
    if _is_blank_amount(amount):
        return 0.0
    if from_currency == to_currency:
        return amount

    in_reporting = to_reporting_currency(amount, from_currency, reporting_currency, exchange_rates)
    return from_reporting_currency(in_reporting, to_currency, reporting_currency, exchange_rates)


def migrate_legacy_exchange_rates(legacy_rates: Dict[str, float],
                                  reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> Dict[str, float]:
    """
    Convert pair-keyed rates to the per-currency form.

    {'USD/ZAR': 18.5} -> {'USD': 18.5}. Pairs quoted against another currency
    are dropped.
    """
    rates = {}
    for pair, rate in legacy_rates.items():
        if '/' not in pair:
            continue
        from_currency, to_currency = pair.split('/', 1)
        if to_currency == reporting_currency:
            rates[from_currency] = rate
    return rates


def to_legacy_exchange_rates(exchange_rates: Dict[str, float],
                             reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> Dict[str, float]:
    """{'USD': 18.5} -> {'USD/ZAR': 18.5}"""
    return {f"{currency}/{reporting_currency}": rate for currency, rate in exchange_rates.items()}


def calculate_asset_value(asset, exchange_rates: Dict[str, float],
                          reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> float:
    """Current value of an asset in the reporting currency"""
    return to_reporting_currency(asset.units * asset.current_price, asset.currency,
                                 reporting_currency, exchange_rates)


def calculate_cost_basis(asset, exchange_rates: Dict[str, float],
                         reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> float:
    """Cost basis of an asset in the reporting currency"""
    return to_reporting_currency(asset.units * asset.cost_price, asset.currency,
                                 reporting_currency, exchange_rates)


def calculate_investible_assets(assets: List, exchange_rates: Dict[str, float],
                                reporting_currency: str = DEFAULT_REPORTING_CURRENCY) -> float:
    """Total value of investible assets in the reporting currency"""
    return sum(calculate_asset_value(asset, exchange_rates, reporting_currency)
               for asset in assets if asset.asset_type == 'Investible')


def _asset_return(asset, expected_returns: Dict[str, float]) -> float:
    if asset.expected_return is not None:
        return asset.expected_return
    return expected_returns.get(asset.asset_class, 0.0)


def calculate_portfolio_return(assets: List,
                               exchange_rates: Dict[str, float],
                               expected_returns: Dict[str, float],
                               reporting_currency: str = DEFAULT_REPORTING_CURRENCY,
                               currency_movement: Optional[Dict[str, float]] = None) -> float:
    """
    Value-weighted expected return (%) of the investible assets.

    Per-asset expected_return overrides the asset class default. When
    currency_movement is given, each foreign asset's weight times its currency's
    annual movement (%) is added on top.

    Args:
        assets: Asset list (non-investible assets are ignored)
        exchange_rates: Rates into the reporting currency
        expected_returns: Default return per asset class (%)
        reporting_currency: Reporting currency
        currency_movement: Optional annual % change per currency

    Returns:
        Weighted return in percent, 0 for an empty portfolio
    """
    investible = [asset for asset in assets if asset.asset_type == 'Investible']
    if not investible:
        return 0.0

    values = np.array([calculate_asset_value(asset, exchange_rates, reporting_currency)
                       for asset in investible], dtype=float)
    total_value = values.sum()
    if total_value <= 0:
        return 0.0

    weights = values / total_value
    returns = np.array([_asset_return(asset, expected_returns) for asset in investible], dtype=float)
    weighted_return = float(np.sum(weights * returns))

    if currency_movement:
        movements = np.array([
            currency_movement.get(asset.currency, 0.0) if asset.currency != reporting_currency else 0.0
            for asset in investible
        ], dtype=float)
        weighted_return += float(np.sum(weights * movements))

    return weighted_return
