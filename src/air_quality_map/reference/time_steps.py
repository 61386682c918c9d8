"""Temporal resolutions and their auto-refresh cadence."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TimeStep:
    """An aggregation granularity offered to the user."""

    key: str
    name: str
    code: str
    minutes: float


TIME_STEPS: dict[str, TimeStep] = {
    "instantane": TimeStep("instantane", "Scan", "instantane", 0),
    "deuxMin": TimeStep("deuxMin", "≤ 2 min", "2min", 2),
    "quartHeure": TimeStep("quartHeure", "15 min", "qh", 15),
    "heure": TimeStep("heure", "Heure", "h", 60),
    "jour": TimeStep("jour", "Jour", "d", 24 * 60),
}

DEFAULT_TIME_STEP = "heure"

# Seconds between two automatic fetch cycles.
REFRESH_PERIODS: dict[str, float] = {
    "instantane": 60,
    "deuxMin": 2 * 60,
    "quartHeure": 15 * 60,
    "heure": 60 * 60,
    "jour": 24 * 60 * 60,
}


def refresh_period(time_step: str) -> float:
    """Auto-refresh period for a time step, accepting keys or short codes.

    Unknown steps fall back to the hourly cadence.
    """
    if time_step in REFRESH_PERIODS:
        return REFRESH_PERIODS[time_step]
    for step in TIME_STEPS.values():
        if step.code == time_step:
            return REFRESH_PERIODS[step.key]
    return REFRESH_PERIODS[DEFAULT_TIME_STEP]
