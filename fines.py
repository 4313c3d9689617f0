import logging
import math
from dataclasses import dataclass
from datetime import datetime

from config import Config

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class FineStatus:
    is_overdue: bool
    base_cost: float
    days_overdue: int
    fine: float

    def to_dict(self):
        return {
            "isOverdue": self.is_overdue,
            "baseCost": self.base_cost,
            "daysOverdue": self.days_overdue,
            "fine": self.fine,
        }


NO_FINE = FineStatus(is_overdue=False, base_cost=0.0, days_overdue=0, fine=0.0)


def _ceil_days(seconds):
    return math.ceil(seconds / SECONDS_PER_DAY)


def is_overdue(due_at: datetime, now: datetime) -> bool:
    return now > due_at


def base_cost(borrowed_at: datetime, due_at: datetime, price_per_day: float = Config.PRICE_PER_DAY) -> float:
    """Price of the agreed borrowing period, never less than one day."""
    if borrowed_at >= due_at:
        logger.warning(
            "Borrow dates out of order (borrowedAt=%s, dueDate=%s); charging one day",
            borrowed_at.isoformat(),
            due_at.isoformat(),
        )
        return price_per_day
    days = _ceil_days((due_at - borrowed_at).total_seconds())
    return max(1, days) * price_per_day


def compute_fine(
    borrowed_at: datetime,
    due_at: datetime,
    now: datetime,
    price_per_day: float = Config.PRICE_PER_DAY,
    overdue_fine: float = Config.OVERDUE_FINE,
) -> FineStatus:
    """Overdue status and fine of a borrowed book as seen at ``now``.

    Pure function of its arguments: nothing is read from or written to the
    store, so repeated calls with the same ``now`` agree.
    """
    cost = base_cost(borrowed_at, due_at, price_per_day)
    if not is_overdue(due_at, now):
        return FineStatus(is_overdue=False, base_cost=cost, days_overdue=0, fine=0.0)

    days_overdue = _ceil_days((now - due_at).total_seconds())
    return FineStatus(
        is_overdue=True,
        base_cost=cost,
        days_overdue=days_overdue,
        fine=cost + overdue_fine,
    )
