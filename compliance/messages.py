"""
Compliance notification texts.
"""

from datetime import datetime


def format_amount(value: float) -> str:
    """Whole numbers without decimals, otherwise up to 2 places."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _plural_days(count: int) -> str:
    return f"{count} day" if count == 1 else f"{count} days"


def format_warning_message(
    influencer: str,
    minimum_volume: float,
    volume: float,
    deadline: datetime,
    days_remaining: int,
) -> str:
    return " ".join([
        f"Heads up! Your verified access for {influencer} is at risk.",
        f"Required volume: {format_amount(minimum_volume)}. Current recorded volume: {format_amount(volume)}.",
        f"Please reach the required volume before {deadline.strftime('%Y-%m-%d')} "
        f"({_plural_days(days_remaining)} remaining).",
    ])


def format_revocation_message(
    influencer: str,
    minimum_volume: float,
    volume: float,
    duration_days: int,
) -> str:
    return " ".join([
        f"Your verified access for {influencer} has been revoked because the recorded trading volume "
        f"({format_amount(volume)})",
        f"did not reach the required {format_amount(minimum_volume)} within {_plural_days(duration_days)}.",
        "Please verify again once you meet the requirement.",
    ])
