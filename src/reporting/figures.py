import os
import tempfile
from pathlib import Path

# Matplotlib must be configured before importing pyplot.
_mpl_cache_dir = Path(tempfile.gettempdir()) / "matplotlib"
_mpl_cache_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_mpl_cache_dir))

import matplotlib  # noqa: E402

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402


def save_figure(fig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=300, bbox_inches="tight")
    plt.close(fig)


def plot_regions(gdf, labels: pd.Series, path: Path, title: str = "Max-p regions") -> None:
    data = gdf.copy()
    data["region"] = labels.reindex(data.index).astype("category")
    fig, ax = plt.subplots(figsize=(8, 8))
    data.plot(column="region", categorical=True, cmap="tab20", linewidth=0.2, edgecolor="white", ax=ax)
    data.dissolve(by="region").boundary.plot(ax=ax, color="black", linewidth=0.8)
    ax.set_title(f"{title} (p={labels.nunique()})")
    ax.set_axis_off()
    save_figure(fig, path)


def plot_event_study(coefs: pd.DataFrame, path: Path, title: str, reference: int = -1) -> None:
    """Point estimates with 95% intervals by event time; the reference period is drawn at zero."""

    df = coefs[["event_time", "coef", "std_err"]].copy()
    df = pd.concat(
        [df, pd.DataFrame([{"event_time": reference, "coef": 0.0, "std_err": 0.0}])], ignore_index=True
    ).sort_values("event_time")

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.errorbar(
        df["event_time"],
        df["coef"],
        yerr=1.96 * df["std_err"].to_numpy(dtype=float),
        fmt="o",
        capsize=3,
    )
    ax.axhline(0.0, color="grey", linewidth=0.8)
    ax.axvline(reference + 0.5, color="grey", linestyle="--", linewidth=0.8)
    ax.set_xticks(np.asarray(df["event_time"], dtype=int))
    ax.set_xlabel("Elections relative to superblock adoption")
    ax.set_ylabel("Coefficient (95% CI)")
    ax.set_title(title)
    fig.tight_layout()
    save_figure(fig, path)
