from __future__ import annotations

from dataclasses import dataclass

import pandas as pd

from src.config import MIN_TRACT_HOUSEHOLDS, MIN_TRACT_TRIPS


@dataclass(frozen=True)
class TractAdequacy:
    n_households: int
    n_trips: int
    adequate: bool
    reason: str


def evaluate_tract_adequacy(
    n_households: int,
    n_trips: int,
    *,
    min_households: int = MIN_TRACT_HOUSEHOLDS,
    min_trips: int = MIN_TRACT_TRIPS,
) -> TractAdequacy:
    n_households = int(n_households)
    n_trips = int(n_trips)

    reasons = []
    if n_households < int(min_households):
        reasons.append(f"households<{int(min_households)}")
    if n_trips < int(min_trips):
        reasons.append(f"trips<{int(min_trips)}")

    return TractAdequacy(
        n_households=n_households,
        n_trips=n_trips,
        adequate=(len(reasons) == 0),
        reason=";".join(reasons),
    )


def flag_adequate_tracts(
    tracts: pd.DataFrame,
    *,
    min_households: int = MIN_TRACT_HOUSEHOLDS,
    min_trips: int = MIN_TRACT_TRIPS,
) -> pd.DataFrame:
    """Add `adequate` and `adequacy_reason` columns to a tract table."""

    out = tracts.copy()
    checks = [
        evaluate_tract_adequacy(h, t, min_households=min_households, min_trips=min_trips)
        for h, t in zip(out["n_households"].to_numpy(), out["n_trips"].to_numpy())
    ]
    out["adequate"] = [c.adequate for c in checks]
    out["adequacy_reason"] = [c.reason for c in checks]
    return out
