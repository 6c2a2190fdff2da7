def format_currency(amount: float, symbol: str = "$") -> str:
    """Format a float as currency string, e.g. '$1,234.56'."""
    return f"{symbol}{amount:,.2f}"


def format_directed(amount: float, direction: str, symbol: str = "$") -> str:
    """Income shows as '+$12.00', expense as '-$12.00'."""
    sign = "+" if direction == "income" else "-"
    return f"{sign}{format_currency(abs(amount), symbol)}"
