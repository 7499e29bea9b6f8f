"""Field types shared by request schemas."""
from datetime import datetime, timezone
from typing import Annotated

from pydantic import AfterValidator


def to_naive_utc(value: datetime) -> datetime:
    """Stored datetimes are naive UTC; offset-aware input is converted."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


UtcDateTime = Annotated[datetime, AfterValidator(to_naive_utc)]
