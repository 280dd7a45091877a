CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
}

ZERO_DECIMAL_CURRENCIES = {"JPY"}


def format_currency(cents: int, currency: str = "USD") -> str:
    """Human-readable amount, en-US separators: ``format_currency(120000) == "$1,200.00"``."""
    code = (currency or "USD").upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    sign = "-" if cents < 0 else ""
    value = abs(cents) / 100
    if code in ZERO_DECIMAL_CURRENCIES:
        number = f"{value:,.0f}"
    else:
        number = f"{value:,.2f}"
    if symbol is None:
        return f"{sign}{code} {number}"
    return f"{sign}{symbol}{number}"
