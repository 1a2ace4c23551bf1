import random
import string
from datetime import datetime, timezone

SHORT_UID_LENGTH = 6


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_short_uid(length: int = SHORT_UID_LENGTH) -> str:
    """Return a lowercase alphanumeric identifier usable in resource names and labels"""
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def format_account_email(prefix: str, name: str, domain: str) -> str:
    return f"{prefix}+{name}@{domain}"


def minutes_since(moment: datetime | None) -> float:
    if moment is None:
        return 0.0
    return (utc_now() - moment).total_seconds() / 60
