from typing import Iterable, List, Tuple

from app.models.status import ProbeResult


def rank_key(result: ProbeResult) -> Tuple[int, int, str, str, int]:
    """
    Sort key: online first, then most players, then name.

    Offline entries ignore their player count. Name comparison is
    case-insensitive with the raw name and target id as tie-breakers, so
    the order is total and does not depend on input order.
    """
    if result.online:
        return (0, -result.players_online, result.name.casefold(), result.name, result.target_id)
    return (1, 0, result.name.casefold(), result.name, result.target_id)


def rank_results(results: Iterable[ProbeResult]) -> List[ProbeResult]:
    return sorted(results, key=rank_key)
