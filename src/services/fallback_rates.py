"""
Bundled exchange rates used when the rate provider is unreachable.

Units of each currency per 1 USD. Values are a periodic snapshot and only
need to be good enough for estimated totals.
"""

from decimal import Decimal
from typing import Dict

FALLBACK_BASE = "USD"

_USD_RATES = {
    "USD": "1",
    "AED": "3.6725",
    "AFN": "70.5",
    "ALL": "92.8",
    "AMD": "387.5",
    "ANG": "1.79",
    "AOA": "912.0",
    "ARS": "965.0",
    "AUD": "1.52",
    "AWG": "1.79",
    "AZN": "1.70",
    "BAM": "1.77",
    "BBD": "2.00",
    "BDT": "119.5",
    "BGN": "1.77",
    "BHD": "0.376",
    "BIF": "2890.0",
    "BMD": "1.00",
    "BND": "1.31",
    "BOB": "6.91",
    "BRL": "5.55",
    "BSD": "1.00",
    "BTN": "83.9",
    "BWP": "13.3",
    "BYN": "3.27",
    "BZD": "2.00",
    "CAD": "1.36",
    "CDF": "2850.0",
    "CHF": "0.86",
    "CLF": "0.024",
    "CLP": "935.0",
    "CNH": "7.25",
    "CNY": "7.10",
    "COP": "4150.0",
    "CRC": "518.0",
    "CUC": "1.00",
    "CUP": "24.0",
    "CVE": "99.8",
    "CZK": "22.9",
    "DJF": "177.7",
    "DKK": "6.75",
    "DOP": "60.1",
    "DZD": "133.0",
    "EGP": "48.5",
    "ERN": "15.0",
    "ETB": "118.0",
    "EUR": "0.905",
    "FJD": "2.22",
    "FKP": "0.76",
    "FOK": "6.90",
    "GBP": "0.76",
    "GEL": "2.70",
    "GGP": "0.79",
    "GHS": "15.7",
    "GIP": "0.76",
    "GMD": "69.5",
    "GNF": "8620.0",
    "GTQ": "7.73",
    "GYD": "209.0",
    "HKD": "7.78",
    "HNL": "24.8",
    "HRK": "6.97",
    "HTG": "131.5",
    "HUF": "357.0",
    "IDR": "15400.0",
    "ILS": "3.75",
    "IMP": "0.79",
    "INR": "83.9",
    "IQD": "1310.0",
    "IRR": "42050.0",
    "ISK": "136.5",
    "JEP": "0.79",
    "JMD": "157.0",
    "JOD": "0.709",
    "JPY": "145.0",
    "KES": "129.0",
    "KGS": "84.5",
    "KHR": "4070.0",
    "KID": "1.52",
    "KMF": "445.0",
    "KPW": "900.0",
    "KRW": "1330.0",
    "KWD": "0.305",
    "KYD": "0.833",
    "KZT": "480.0",
    "LAK": "22000.0",
    "LBP": "89500.0",
    "LKR": "300.0",
    "LRD": "195.0",
    "LSL": "17.8",
    "LYD": "4.75",
    "MAD": "9.70",
    "MDL": "17.4",
    "MGA": "4550.0",
    "MKD": "55.7",
    "MMK": "2100.0",
    "MNT": "3390.0",
    "MOP": "8.01",
    "MRO": "357.0",
    "MRU": "39.7",
    "MUR": "46.0",
    "MVR": "15.4",
    "MWK": "1735.0",
    "MXN": "19.3",
    "MYR": "4.30",
    "MZN": "63.9",
    "NAD": "17.8",
    "NGN": "1600.0",
    "NIO": "36.8",
    "NOK": "10.6",
    "NPR": "134.2",
    "NZD": "1.62",
    "OMR": "0.385",
    "PAB": "1.00",
    "PEN": "3.75",
    "PGK": "3.92",
    "PHP": "56.0",
    "PKR": "278.0",
    "PLN": "3.87",
    "PYG": "7650.0",
    "QAR": "3.64",
    "RON": "4.50",
    "RSD": "106.0",
    "RUB": "91.0",
    "RWF": "1340.0",
    "SAR": "3.75",
    "SBD": "8.35",
    "SCR": "13.6",
    "SDG": "601.0",
    "SEK": "10.3",
    "SGD": "1.31",
    "SHP": "0.76",
    "SLE": "22.5",
    "SLL": "20970.0",
    "SOS": "571.0",
    "SRD": "29.0",
    "SSP": "2600.0",
    "STD": "22281.0",
    "STN": "22.2",
    "SVC": "8.75",
    "SYP": "13000.0",
    "SZL": "17.8",
    "THB": "34.0",
    "TJS": "10.6",
    "TMT": "3.50",
    "TND": "3.05",
    "TOP": "2.33",
    "TRY": "34.0",
    "TTD": "6.78",
    "TVD": "1.52",
    "TWD": "32.0",
    "TZS": "2720.0",
    "UAH": "41.2",
    "UGX": "3700.0",
    "UYU": "40.3",
    "UZS": "12650.0",
    "VED": "36.7",
    "VES": "36.7",
    "VND": "24900.0",
    "VUV": "119.0",
    "WST": "2.72",
    "XAF": "593.0",
    "XAG": "0.033",
    "XAU": "0.00042",
    "XCD": "2.70",
    "XDR": "0.75",
    "XOF": "593.0",
    "XPD": "0.001",
    "XPF": "108.0",
    "XPT": "0.0011",
    "YER": "250.0",
    "ZAR": "17.8",
    "ZMW": "26.3",
    "ZWL": "13.9",
}

USD_RATES: Dict[str, Decimal] = {code: Decimal(value) for code, value in _USD_RATES.items()}

SUPPORTED_CURRENCIES = frozenset(USD_RATES)


def is_supported(code: str) -> bool:
    return code in USD_RATES


def rebase(base: str, table: Dict[str, Decimal] = USD_RATES) -> Dict[str, Decimal]:
    """
    Express a USD-based table in units per 1 `base`.

    Raises:
        KeyError: base is not in the table
    """
    base_rate = table[base]
    if base == FALLBACK_BASE:
        return dict(table)
    return {code: rate / base_rate for code, rate in table.items()}
