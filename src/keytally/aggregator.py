from typing import Iterable

from keytally.models import Totals, UsageOk, UsageResult


def aggregate(results: "Iterable[UsageResult]") -> "Totals":
    """
    folds successful results into totals. Failed results are ignored.

    Remaining allowance is clamped to zero per credential before it is
    summed, so an over-used credential contributes nothing rather than
    cancelling out the balance of healthy ones.
    """
    total_allowance: "int | float" = 0
    total_used: "int | float" = 0
    total_remaining: "int | float" = 0

    for result in results:
        if not isinstance(result, UsageOk):
            continue
        total_allowance += result.total_allowance
        total_used += result.used
        total_remaining += max(result.remaining, 0)

    return Totals(
        total_allowance=total_allowance,
        total_used=total_used,
        total_remaining_clamped=total_remaining,
    )


def credentials_with_balance(results: "Iterable[UsageResult]") -> "list[UsageOk]":
    """
    returns the successful results that still have allowance left.
    """
    return [r for r in results if isinstance(r, UsageOk) and r.remaining > 0]
