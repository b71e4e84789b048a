from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .provenance import payload_digest
from .report import AnalysisKind
from .schemas import validate_plan_payload


DEFAULT_TIMES = {
    AnalysisKind.INFLU: None,
    AnalysisKind.SAMP: 30,
    AnalysisKind.CLADE: 100,
    AnalysisKind.TREE: 2,
    AnalysisKind.INTRA: 30,
}
DEFAULT_BREAKS = (0.1, 0.2, 0.3, 0.4, 0.5)


@dataclass(frozen=True)
class PerturbationPlan:
    mode: AnalysisKind
    times: int | None = None
    breaks: tuple[float, ...] = DEFAULT_BREAKS
    clade_col: str | None = None
    n_species: int = 5
    distribution: str = "normal"
    cutoff: float = 2.0
    alpha: float = 0.05
    top: int = 5
    seed: int | None = None
    n_jobs: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.mode, AnalysisKind):
            object.__setattr__(self, "mode", AnalysisKind(str(self.mode).lower()))
        object.__setattr__(self, "distribution", str(self.distribution).lower())
        object.__setattr__(self, "breaks", tuple(float(b) for b in self.breaks))
        validate_plan_payload(self.to_dict())

    @property
    def resolved_times(self) -> int | None:
        return DEFAULT_TIMES[self.mode] if self.times is None else self.times

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": 1,
            "mode": AnalysisKind(self.mode).value,
            "times": self.times,
            "breaks": [float(b) for b in self.breaks],
            "clade_col": self.clade_col,
            "n_species": self.n_species,
            "distribution": self.distribution,
            "cutoff": float(self.cutoff),
            "alpha": float(self.alpha),
            "top": self.top,
            "seed": self.seed,
            "n_jobs": self.n_jobs,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PerturbationPlan":
        validate_plan_payload(payload)
        return cls(
            mode=AnalysisKind(str(payload["mode"]).lower()),
            times=None if payload.get("times") is None else int(payload["times"]),
            breaks=tuple(float(b) for b in payload.get("breaks") or DEFAULT_BREAKS),
            clade_col=None if payload.get("clade_col") is None else str(payload["clade_col"]),
            n_species=int(payload.get("n_species", 5)),
            distribution=str(payload.get("distribution", "normal")).lower(),
            cutoff=float(payload.get("cutoff", 2.0)),
            alpha=float(payload.get("alpha", 0.05)),
            top=int(payload.get("top", 5)),
            seed=None if payload.get("seed") is None else int(payload["seed"]),
            n_jobs=int(payload.get("n_jobs", 1)),
        )

    def plan_hash(self) -> str:
        return payload_digest(self.to_dict())


def load_plan(path: str | Path) -> PerturbationPlan:
    p = Path(path)
    with p.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"plan file must be a JSON object: {p}")
    return PerturbationPlan.from_dict(payload)
