from __future__ import annotations

import math

import numpy as np


def deviation(estimate: dict[str, float], baseline: dict[str, float]) -> dict[str, float]:
    return {name: float(estimate[name]) - float(value) for name, value in baseline.items()}


def percentage_change(dev: dict[str, float], baseline: dict[str, float]) -> dict[str, float]:
    """``100 * |dev| / |baseline|``; NaN where the baseline is exactly zero."""
    out: dict[str, float] = {}
    for name, value in baseline.items():
        base = float(value)
        out[name] = float("nan") if base == 0.0 else 100.0 * abs(dev[name]) / abs(base)
    return out


def standardize(values: np.ndarray) -> np.ndarray:
    """Divide by the sample sd (ddof=1); all NaN when the sd is zero or undefined."""
    values = np.asarray(values, dtype=float)
    finite = values[np.isfinite(values)]
    if finite.size < 2:
        return np.full(values.shape, np.nan)
    sd = float(np.std(finite, ddof=1))
    if sd == 0.0 or not math.isfinite(sd):
        return np.full(values.shape, np.nan)
    return values / sd


def empirical_p_value(
    observed: float,
    null_values: np.ndarray,
    *,
    tail: str = "abs",
) -> float:
    """Share of null values at least as extreme as ``observed``.

    tail='abs':   P(|T| >= |T_obs|)
    tail='right': P(T >= T_obs)
    tail='left':  P(T <= T_obs)

    No add-one correction; NaN for an empty null.
    """
    null_values = np.asarray(null_values, dtype=float)
    if null_values.ndim != 1:
        raise ValueError("null_values must be a 1D array.")
    null_values = null_values[np.isfinite(null_values)]
    n = int(null_values.size)
    if n == 0 or not math.isfinite(observed):
        return float("nan")

    mode = tail.lower()
    if mode == "abs":
        b = int(np.count_nonzero(np.abs(null_values) >= abs(observed)))
    elif mode == "right":
        b = int(np.count_nonzero(null_values >= observed))
    elif mode == "left":
        b = int(np.count_nonzero(null_values <= observed))
    else:
        raise ValueError(f"Unsupported tail: {tail}")
    return b / n


def describe(values: np.ndarray) -> dict[str, float]:
    """Mean, sd, range and central 95% interval of a set of estimates."""
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        nan = float("nan")
        return {"mean": nan, "sd": nan, "min": nan, "max": nan, "ci_low": nan, "ci_high": nan}
    return {
        "mean": float(np.mean(values)),
        "sd": float(np.std(values, ddof=1)) if values.size > 1 else float("nan"),
        "min": float(np.min(values)),
        "max": float(np.max(values)),
        "ci_low": float(np.quantile(values, 0.025)),
        "ci_high": float(np.quantile(values, 0.975)),
    }
