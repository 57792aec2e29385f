"""
Module for formatting money values using Babel.

"""
import logging
import math
from typing import Any

from babel import Locale, numbers

CURRENCY_MAP: dict[str, str] = {
    'US': 'USD',
    'GB': 'GBP',
    'DE': 'EUR',
    'FR': 'EUR',
    'BE': 'EUR',
    'IT': 'EUR',
    'ES': 'EUR',
    'JP': 'JPY',
    'CA': 'CAD',
    'AU': 'AUD',
    'IN': 'INR',
    'BR': 'BRL',
    'CN': 'CNY',
    'KR': 'KRW',
    'DK': 'DKK',
    'SE': 'SEK',
    'NO': 'NOK',
    'FI': 'EUR',
    'HU': 'HUF',
    'MX': 'MXN',
    'ZA': 'ZAR',
    'TR': 'TRY',
    'NL': 'EUR',
}


def get_currency_from_locale(locale: str) -> str:
    """
    Retrieve the default currency code based on the locale's territory.

    Args:
        locale (str): Locale string, e.g. 'fr_FR'.

    Returns:
        str: Currency code such as 'EUR'. Defaults to 'USD' if the territory is unknown.
    """
    parts = locale.split('_')
    if len(parts) < 2:
        return 'USD'
    return CURRENCY_MAP.get(parts[1], 'USD')


def _to_amount(value: Any) -> float:
    try:
        amount = float(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(amount):
        return 0.0
    return amount


def format_money(value: Any, currency: str = 'USD', locale: str = 'en_US') -> str:
    """
    Format a value as a currency string.

    Empty or non-numeric values are treated as zero.

    Args:
        value: The amount, as a number or numeric string.
        currency (str): ISO 4217 currency code.
        locale (str): Locale string, e.g. 'en_US'.

    Returns:
        str: The formatted currency string, or ``$<amount>`` with two decimals
        if Babel cannot format the currency.
    """
    amount = _to_amount(value)
    if not numbers.is_currency(currency):
        logging.debug(f'Unknown currency "{currency}"')
        return f'${amount:.2f}'
    try:
        return numbers.format_currency(amount, currency=currency, locale=Locale.parse(locale))
    except Exception as ex:
        logging.debug(f'Error formatting currency "{currency}": {ex}')
        return f'${amount:.2f}'
