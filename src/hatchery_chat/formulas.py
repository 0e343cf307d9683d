"""Hatchery rate formulas.

Each named rate has exactly one definition here. Percentages are rounded to
two decimals and a zero or negative denominator yields 0.

- hatch %: chicks hatched / sample size
- HOF % (hatch of fertile): chicks hatched / fertile eggs
- HOI % (hatch of injection): chicks hatched / eggs injected
- fertility %: fertile eggs / sample size
- I/F dev %: infertile eggs / fertile eggs
"""

from __future__ import annotations


def _percent(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator * 100.0, 2)


def hatch_percent(chicks_hatched: float, sample_size: float) -> float:
    return _percent(chicks_hatched, sample_size)


def hof_percent(chicks_hatched: float, fertile_eggs: float) -> float:
    return _percent(chicks_hatched, fertile_eggs)


def hoi_percent(chicks_hatched: float, eggs_injected: float) -> float:
    return _percent(chicks_hatched, eggs_injected)


def fertility_percent(fertile_eggs_count: float, sample_size: float) -> float:
    return _percent(fertile_eggs_count, sample_size)


def infertile_dev_percent(infertile_eggs: float, fertile_eggs_count: float) -> float:
    return _percent(infertile_eggs, fertile_eggs_count)


def fertile_eggs(sample_size: int, infertile_eggs: int) -> int:
    return max(0, sample_size - infertile_eggs)


def embryonic_mortality(
    early_dead: int,
    mid_dead: int,
    late_dead: int,
    live_pips: int,
    dead_pips: int,
) -> int:
    return early_dead + mid_dead + late_dead + live_pips + dead_pips


def chicks_hatched_from_residue(
    sample_size: int,
    *,
    infertile: int,
    early_dead: int,
    mid_dead: int,
    late_dead: int,
    culls: int,
    live_pips: int,
    dead_pips: int,
) -> int:
    """Chicks hatched implied by a residue breakout of one sample."""
    lost = infertile + culls + embryonic_mortality(
        early_dead, mid_dead, late_dead, live_pips, dead_pips
    )
    return max(0, sample_size - lost)


def clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, value))
