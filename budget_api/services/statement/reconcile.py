"""
Expected opening/closing balance inference.

The metadata block of the export does not always carry both balances,
so whatever is missing is back-filled from the rows. The order of the
steps below decides the output when the evidence disagrees; keep it.
"""

from typing import Optional

from .records import ImportMetadata, ParsedRow


def net_change(rows: list[ParsedRow]) -> float:
    return round(sum(row.amount for row in rows if row.amount is not None), 2)


def reconcile_balances(rows: list[ParsedRow], metadata: ImportMetadata) -> ImportMetadata:
    """Return a copy of `metadata` with expected_start / expected_end filled in where possible."""
    result = metadata.copy()
    net = net_change(rows)
    with_balance = [row for row in rows if row.balance_after is not None]

    # 1. closing balance = balance after the last row that carries one
    if result.expected_end is None and with_balance:
        result.expected_end = with_balance[-1].balance_after

    # 2. opening balance = balance before the first row that carries one
    if result.expected_start is None and with_balance:
        first = with_balance[0]
        start: Optional[float] = first.balance_after
        if first.amount is not None:
            start = round(first.balance_after - first.amount, 2)
        result.expected_start = start

    # 3. one side known: derive the other from the net change
    if result.expected_end is not None and result.expected_start is None:
        result.expected_start = round(result.expected_end - net, 2)
    elif result.expected_start is not None and result.expected_end is None:
        result.expected_end = round(result.expected_start + net, 2)

    return result
