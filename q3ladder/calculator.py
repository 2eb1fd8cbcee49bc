# q3ladder/calculator.py

from typing import Any, Dict, List, Tuple


def compute_kd(kills: int, deaths: int) -> float:
    """K/D: kills when there are no deaths, else kills/deaths to two places."""
    kills = int(kills or 0)
    deaths = int(deaths or 0)
    if deaths <= 0:
        return float(kills)
    return round(kills / deaths, 2)


def ladder_sort_key(row: Dict[str, Any]) -> Tuple:
    """Kills desc, then K/D desc, then deaths asc, then name for stability."""
    kills = int(row.get('kills') or 0)
    deaths = int(row.get('deaths') or 0)
    kd = row.get('kd')
    if kd is None:
        kd = compute_kd(kills, deaths)
    name = str(row.get('identity') or row.get('name') or '')
    return (-kills, -kd, deaths, name)


def rank_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Fill in kd where missing and return rows in ladder order."""
    for row in rows:
        row['kd'] = compute_kd(row.get('kills', 0), row.get('deaths', 0))
    return sorted(rows, key=ladder_sort_key)


def page(rows: List[Dict[str, Any]], limit: int, offset: int = 0) -> List[Dict[str, Any]]:
    offset = max(0, int(offset or 0))
    if limit is None:
        return rows[offset:]
    return rows[offset:offset + max(0, int(limit))]
