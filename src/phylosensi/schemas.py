from __future__ import annotations

from typing import Any


PLAN_MODES = ("influ", "samp", "clade", "tree", "intra")
PLAN_KEYS = {
    "schema_version",
    "mode",
    "times",
    "breaks",
    "clade_col",
    "n_species",
    "distribution",
    "cutoff",
    "alpha",
    "top",
    "seed",
    "n_jobs",
}


def _ensure_type(payload: Any, expected: type | tuple[type, ...], label: str) -> None:
    if isinstance(payload, bool) or not isinstance(payload, expected):
        names = (
            expected.__name__
            if isinstance(expected, type)
            else " or ".join(t.__name__ for t in expected)
        )
        raise ValueError(f"{label} must be {names}.")


def _require_keys(payload: dict[str, Any], keys: list[str], label: str) -> None:
    missing = [k for k in keys if k not in payload]
    if missing:
        raise ValueError(f"{label} missing required keys: {', '.join(missing)}")


def validate_plan_payload(payload: dict[str, Any]) -> None:
    _ensure_type(payload, dict, "plan payload")
    _require_keys(payload, ["mode"], "plan payload")
    unknown = sorted(set(payload) - PLAN_KEYS)
    if unknown:
        raise ValueError(f"plan payload has unknown keys: {', '.join(unknown)}")
    if int(payload.get("schema_version", 1)) != 1:
        raise ValueError("plan schema_version must be 1.")
    if str(payload["mode"]).lower() not in PLAN_MODES:
        raise ValueError(f"plan mode must be one of: {', '.join(PLAN_MODES)}")

    if payload.get("times") is not None:
        _ensure_type(payload["times"], int, "plan times")
        if payload["times"] <= 0:
            raise ValueError("plan times must be > 0.")
    if payload.get("breaks") is not None:
        _ensure_type(payload["breaks"], list, "plan breaks")
        if not payload["breaks"]:
            raise ValueError("plan breaks must be a non-empty list.")
        for value in payload["breaks"]:
            _ensure_type(value, (int, float), "plan break")
            if not (0.0 < float(value) < 1.0):
                raise ValueError("plan breaks must lie strictly between 0 and 1.")
    if payload.get("clade_col") is not None:
        _ensure_type(payload["clade_col"], str, "plan clade_col")
    if payload.get("n_species") is not None:
        _ensure_type(payload["n_species"], int, "plan n_species")
        if payload["n_species"] < 0:
            raise ValueError("plan n_species must be >= 0.")
    if payload.get("distribution") is not None:
        if str(payload["distribution"]).lower() not in {"normal", "uniform"}:
            raise ValueError("plan distribution must be normal or uniform.")
    if payload.get("cutoff") is not None:
        _ensure_type(payload["cutoff"], (int, float), "plan cutoff")
        if float(payload["cutoff"]) <= 0:
            raise ValueError("plan cutoff must be > 0.")
    if payload.get("alpha") is not None:
        _ensure_type(payload["alpha"], (int, float), "plan alpha")
        if not (0.0 < float(payload["alpha"]) < 1.0):
            raise ValueError("plan alpha must be in (0, 1).")
    if payload.get("top") is not None:
        _ensure_type(payload["top"], int, "plan top")
        if payload["top"] <= 0:
            raise ValueError("plan top must be > 0.")
    if payload.get("seed") is not None:
        _ensure_type(payload["seed"], int, "plan seed")
    if payload.get("n_jobs") is not None:
        _ensure_type(payload["n_jobs"], int, "plan n_jobs")
        if payload["n_jobs"] == 0 or payload["n_jobs"] < -1:
            raise ValueError("plan n_jobs must be >= 1 or -1.")

    mode = str(payload["mode"]).lower()
    if mode == "clade" and not payload.get("clade_col"):
        raise ValueError("clade plan requires clade_col.")
