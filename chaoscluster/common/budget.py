import re

from logzero import logger
from typing import Union

from chaoscluster.common import DEFAULT_CHAOS_MAX_DISRUPTION
from chaoscluster.common.errors import InvalidBudgetError, NoHostsError

_PERCENT_RE = re.compile(r'^\s*(\d+)\s*%\s*$')
_ABSOLUTE_RE = re.compile(r'^\s*(\d+)\s*$')


class ConcurrencyBudget(object):
    """
    How many hosts may be mid-disruption at the same time.

    Either an absolute count (`3`) or a percentage of the fleet (`'30%'`).
    Use ConcurrencyBudget.parse to build one from experiment input.
    """

    def __init__(self, value: int, is_percent: bool = False):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidBudgetError(
                "budget must be an integer, got {!r}".format(value))
        if value < 0:
            raise InvalidBudgetError(
                "budget must not be negative, got {}".format(value))
        if is_percent and value > 100:
            raise InvalidBudgetError(
                "percentage budget must be between 0% and 100%, "
                "got {}%".format(value))
        self.value = value
        self.is_percent = is_percent

    @classmethod
    def absolute(cls, count: int) -> 'ConcurrencyBudget':
        return cls(count)

    @classmethod
    def percent(cls, percentage: int) -> 'ConcurrencyBudget':
        return cls(percentage, is_percent=True)

    @classmethod
    def parse(cls, value: Union['ConcurrencyBudget', int, str, None] = None
              ) -> 'ConcurrencyBudget':
        """
        Build a budget from an int, an 'N%' string or a digit string.

        None resolves to chaoscluster.common.DEFAULT_CHAOS_MAX_DISRUPTION.
        """
        if value is None:
            value = DEFAULT_CHAOS_MAX_DISRUPTION
        if isinstance(value, ConcurrencyBudget):
            return value
        if isinstance(value, str):
            match = _PERCENT_RE.match(value)
            if match:
                return cls.percent(int(match.group(1)))
            match = _ABSOLUTE_RE.match(value)
            if match:
                return cls.absolute(int(match.group(1)))
            raise InvalidBudgetError(
                "invalid max disruption {!r}: expected a count such as '3' "
                "or a percentage such as '30%'".format(value))
        return cls(value)

    def resolve(self, fleet_size: int) -> int:
        return resolve_budget(self, fleet_size)

    def __eq__(self, other):
        if not isinstance(other, ConcurrencyBudget):
            return NotImplemented
        return (self.value, self.is_percent) == (other.value, other.is_percent)

    def __hash__(self):
        return hash((self.value, self.is_percent))

    def __repr__(self):
        if self.is_percent:
            return "ConcurrencyBudget('{}%')".format(self.value)
        return "ConcurrencyBudget({})".format(self.value)


def resolve_budget(budget: Union[ConcurrencyBudget, int, str, None],
                   fleet_size: int) -> int:
    """
    Turn a concurrency budget into a concrete number of parallel slots.

    Percentages round up so any non-zero share of a fleet gets at least one
    slot. The result is always clamped to [1, fleet_size].

    :param budget: An absolute count, an 'N%' string or a ConcurrencyBudget.
        None means chaoscluster.common.DEFAULT_CHAOS_MAX_DISRUPTION.
    :type budget: Union[ConcurrencyBudget, int, str, None]
    :param fleet_size: Number of hosts in the batch. Must be at least 1.
    :type fleet_size: int
    :return: int
    """
    budget = ConcurrencyBudget.parse(budget)
    if fleet_size < 1:
        raise NoHostsError("cannot resolve {!r} for an empty fleet".format(
            budget))

    if budget.is_percent:
        # Integer ceil(value * fleet_size / 100)
        slots = -(-budget.value * fleet_size // 100)
    else:
        slots = budget.value
    resolved = min(max(slots, 1), fleet_size)
    logger.debug("resolved %r for %d hosts to %d", budget, fleet_size,
                 resolved)
    return resolved
