"""phylosensi package."""

from .analysis import (
    clade_analysis,
    influ_analysis,
    intra_analysis,
    run_analysis,
    samp_analysis,
    tree_analysis,
)
from .errors import (
    FullModelFitFailed,
    NoCommonTaxa,
    NoQualifyingClade,
    OrderingMismatch,
    PruneFailure,
    SensitivityError,
    VariantFitFailed,
)
from .fitting import FitFailure, FitResult, Fitter, PGLSFitter, PhyloLogisticFitter
from .formula import ModelSpec
from .matching import MatchResult, match_data_tree
from .phylo import TreeNode, drop_tips, parse_newick, to_newick
from .plan import PerturbationPlan, load_plan
from .report import AnalysisKind, AnalysisReport

__all__ = [
    "AnalysisKind",
    "AnalysisReport",
    "FitFailure",
    "FitResult",
    "Fitter",
    "FullModelFitFailed",
    "MatchResult",
    "ModelSpec",
    "NoCommonTaxa",
    "NoQualifyingClade",
    "OrderingMismatch",
    "PGLSFitter",
    "PerturbationPlan",
    "PhyloLogisticFitter",
    "PruneFailure",
    "SensitivityError",
    "TreeNode",
    "VariantFitFailed",
    "clade_analysis",
    "drop_tips",
    "influ_analysis",
    "intra_analysis",
    "load_plan",
    "match_data_tree",
    "parse_newick",
    "run_analysis",
    "samp_analysis",
    "to_newick",
    "tree_analysis",
]

__version__ = "0.1.0"
