from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP, getcontext
from typing import Dict, List, Mapping, NamedTuple

getcontext().prec = 28
CENTS = Decimal("0.01")
ZERO = Decimal("0")

# Amounts at or below one cent are treated as rounding noise.
TOLERANCE = Decimal("0.01")


def qround(d: Decimal) -> Decimal:
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class Transfer(NamedTuple):
    debtor_id: int
    creditor_id: int
    amount: Decimal


def simplify_debts(
    net_map: Mapping[int, Decimal],
    tolerance: Decimal = TOLERANCE,
) -> List[Transfer]:
    """
    Greedy largest-creditor / largest-debtor matching.

    net_map: {user_id: net_balance}, positive = owed by the group,
    negative = owes the group. Iteration order of net_map breaks ties.

    Not a minimum-transfer solver; it is deterministic and settles every
    zero-sum input. Residual drift of a cent or less is dropped.
    """
    creditors = []
    debtors = []

    for uid, bal in net_map.items():
        bal = to_decimal(bal)
        if bal > 0:
            creditors.append([uid, bal])
        elif bal < 0:
            debtors.append([uid, -bal])

    # list.sort is stable, also with reverse=True
    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    transfers: List[Transfer] = []
    i = 0
    j = 0

    while i < len(creditors) and j < len(debtors):
        creditor = creditors[i]
        debtor = debtors[j]

        amount = min(creditor[1], debtor[1])
        rounded = qround(amount)

        if rounded > tolerance:
            transfers.append(Transfer(debtor[0], creditor[0], rounded))

        creditor[1] -= amount
        debtor[1] -= amount

        if creditor[1] <= tolerance:
            i += 1
        if debtor[1] <= tolerance:
            j += 1

    return transfers


def equal_split(amount: Decimal, user_ids: List[int]) -> Dict[int, Decimal]:
    """
    Split amount into equal cent shares; leftover cents go to the first users.
    """
    if not user_ids:
        return {}

    amount = qround(to_decimal(amount))
    base = (amount / len(user_ids)).quantize(CENTS, rounding=ROUND_DOWN)
    remainder = int((amount - base * len(user_ids)) / CENTS)

    shares = {}
    for idx, uid in enumerate(user_ids):
        shares[uid] = base + (CENTS if idx < remainder else ZERO)
    return shares
