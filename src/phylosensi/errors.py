from __future__ import annotations


class SensitivityError(ValueError):
    """Base class for sensitivity-analysis failures."""


class NoCommonTaxa(SensitivityError):
    pass


class OrderingMismatch(SensitivityError):
    pass


class NoQualifyingClade(SensitivityError):
    pass


class FullModelFitFailed(SensitivityError):
    pass


class VariantFitFailed(SensitivityError):
    """A single perturbed variant could not be fitted; recorded, never fatal."""


class PruneFailure(VariantFitFailed):
    pass
