from decimal import Decimal


def format_money(amount: Decimal) -> str:
    """
    Format an amount as dollars with two decimals, e.g. -1234.5 -> '-$1,234.50'.
    """
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_balance(amount: Decimal) -> str:
    """Friend balance as shown on the totals panel: '$12.50 to receive'."""
    label = "to receive" if amount >= 0 else "to pay"
    return f"{format_money(abs(amount))} {label}"
