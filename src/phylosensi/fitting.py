from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
import pandas as pd
from scipy import optimize, stats
from scipy.special import expit

from .formula import ModelSpec
from .phylo import TreeNode, vcv_matrix


@dataclass(frozen=True)
class FitResult:
    coefficients: dict[str, float]
    p_values: dict[str, float]
    aic: float
    phylo_param: float
    n_taxa: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "coefficients": dict(self.coefficients),
            "p_values": dict(self.p_values),
            "aic": self.aic,
            "phylo_param": self.phylo_param,
            "n_taxa": self.n_taxa,
        }


@dataclass(frozen=True)
class FitFailure:
    reason: str


FitOutcome = FitResult | FitFailure


@runtime_checkable
class Fitter(Protocol):
    """Regression capability: fit once, report a ``FitResult`` or a ``FitFailure``."""

    def fit(self, spec: ModelSpec, data: pd.DataFrame, tree: TreeNode) -> FitOutcome: ...


def _pagel(cov: np.ndarray, lam: float) -> np.ndarray:
    out = cov * lam
    np.fill_diagonal(out, np.diag(cov))
    return out


def _gls(y: np.ndarray, X: np.ndarray, V: np.ndarray) -> tuple[np.ndarray, np.ndarray, float, float]:
    """Return beta, (X'V^-1X)^-1, r'V^-1r and log|V| via Cholesky."""
    L = np.linalg.cholesky(V)
    Xs = np.linalg.solve(L, X)
    ys = np.linalg.solve(L, y)
    xtx = Xs.T @ Xs
    xtx_inv = np.linalg.inv(xtx)
    beta = xtx_inv @ (Xs.T @ ys)
    resid = ys - Xs @ beta
    logdet = 2.0 * float(np.sum(np.log(np.diag(L))))
    return beta, xtx_inv, float(resid @ resid), logdet


class PGLSFitter:
    """Phylogenetic generalized least squares under Brownian motion.

    ``lambda_`` is either ``"ml"`` (Pagel's lambda fitted by maximum likelihood
    on [lower, upper]) or a fixed value in [0, 1]; ``1.0`` is plain Brownian
    motion. Coefficient p-values are two-sided t-tests on n - k df.
    """

    def __init__(
        self,
        lambda_: float | str = "ml",
        *,
        bounds: tuple[float, float] = (1e-6, 1.0),
    ) -> None:
        if isinstance(lambda_, str):
            if lambda_.lower() != "ml":
                raise ValueError(f"lambda_ must be 'ml' or a number, got {lambda_!r}")
        elif not (0.0 <= float(lambda_) <= 1.0):
            raise ValueError("Fixed lambda must lie in [0, 1].")
        lo, hi = bounds
        if not (0.0 <= lo < hi <= 1.0):
            raise ValueError("lambda bounds must satisfy 0 <= lower < upper <= 1.")
        self.lambda_ = lambda_
        self.bounds = (float(lo), float(hi))

    def _loglik(self, y: np.ndarray, X: np.ndarray, cov: np.ndarray, lam: float) -> float:
        n = y.shape[0]
        _, _, rss, logdet = _gls(y, X, _pagel(cov, lam))
        sigma2 = rss / n
        return -0.5 * (n * np.log(2.0 * np.pi * sigma2) + logdet + n)

    def fit(self, spec: ModelSpec, data: pd.DataFrame, tree: TreeNode) -> FitOutcome:
        y, X = spec.design(data)
        n, k = X.shape
        if n <= k + 1:
            return FitFailure(f"too few taxa ({n}) for {k} coefficients")
        if not (np.all(np.isfinite(y)) and np.all(np.isfinite(X))):
            return FitFailure("non-finite values in model variables")
        try:
            cov = vcv_matrix(tree, order=[str(t) for t in data.index])
            if isinstance(self.lambda_, str):
                res = optimize.minimize_scalar(
                    lambda lam: -self._loglik(y, X, cov, lam),
                    bounds=self.bounds,
                    method="bounded",
                )
                if not res.success:
                    return FitFailure(f"lambda optimisation did not converge: {res.message}")
                lam = float(res.x)
                n_params = k + 2
            else:
                lam = float(self.lambda_)
                n_params = k + 1
            beta, xtx_inv, rss, logdet = _gls(y, X, _pagel(cov, lam))
        except np.linalg.LinAlgError as exc:
            return FitFailure(f"singular covariance or design matrix: {exc}")

        loglik = -0.5 * (n * np.log(2.0 * np.pi * rss / n) + logdet + n)
        df = n - k
        se = np.sqrt(np.diag(xtx_inv) * rss / df)
        with np.errstate(divide="ignore", invalid="ignore"):
            t_stat = beta / se
        p = 2.0 * stats.t.sf(np.abs(t_stat), df)
        if not (np.all(np.isfinite(beta)) and np.isfinite(loglik)):
            return FitFailure("non-finite estimates")

        names = spec.coefficient_names
        return FitResult(
            coefficients={name: float(b) for name, b in zip(names, beta)},
            p_values={name: float(pv) for name, pv in zip(names, p)},
            aic=float(-2.0 * loglik + 2.0 * n_params),
            phylo_param=lam,
            n_taxa=n,
        )


class PhyloLogisticFitter:
    """Binary-response regression via GEE with a phylogenetic working correlation.

    The working correlation is the tree's Brownian correlation matrix shrunk
    towards independence by ``lambda_``. Coefficient p-values are Wald z-tests;
    ``aic`` is the Bernoulli AIC at the GEE estimate.
    """

    def __init__(self, lambda_: float = 1.0, *, max_iter: int = 100, tol: float = 1e-8) -> None:
        if not (0.0 <= lambda_ <= 1.0):
            raise ValueError("lambda_ must lie in [0, 1].")
        if max_iter <= 0:
            raise ValueError("max_iter must be > 0")
        self.lambda_ = float(lambda_)
        self.max_iter = int(max_iter)
        self.tol = float(tol)

    def fit(self, spec: ModelSpec, data: pd.DataFrame, tree: TreeNode) -> FitOutcome:
        y, X = spec.design(data)
        n, k = X.shape
        if not np.all(np.isin(y, (0.0, 1.0))):
            return FitFailure("response must be coded 0/1")
        if n <= k:
            return FitFailure(f"too few taxa ({n}) for {k} coefficients")
        if y.min() == y.max():
            return FitFailure("response has a single class")

        cov = vcv_matrix(tree, order=[str(t) for t in data.index])
        sd = np.sqrt(np.diag(cov))
        if np.any(sd <= 0):
            return FitFailure("zero root-to-tip distance in tree")
        corr = _pagel(cov / np.outer(sd, sd), self.lambda_)

        beta = np.zeros(k, dtype=float)
        converged = False
        try:
            for _ in range(self.max_iter):
                mu = expit(X @ beta)
                w = mu * (1.0 - mu)
                if np.any(w < 1e-12):
                    return FitFailure("fitted probabilities numerically 0 or 1")
                a_half = np.sqrt(w)
                V = corr * np.outer(a_half, a_half)
                D = X * w[:, None]
                vinv_d = np.linalg.solve(V, D)
                info = D.T @ vinv_d
                step = np.linalg.solve(info, vinv_d.T @ (y - mu))
                beta = beta + step
                if not np.all(np.isfinite(beta)):
                    return FitFailure("estimates diverged")
                if float(np.max(np.abs(step))) < self.tol:
                    converged = True
                    break
            if not converged:
                return FitFailure(f"GEE did not converge in {self.max_iter} iterations")
            mu = expit(X @ beta)
            w = mu * (1.0 - mu)
            a_half = np.sqrt(w)
            D = X * w[:, None]
            info = D.T @ np.linalg.solve(corr * np.outer(a_half, a_half), D)
            cov_beta = np.linalg.inv(info)
        except np.linalg.LinAlgError as exc:
            return FitFailure(f"singular working covariance: {exc}")

        se = np.sqrt(np.diag(cov_beta))
        p = 2.0 * stats.norm.sf(np.abs(beta / se))
        mu = np.clip(mu, 1e-12, 1.0 - 1e-12)
        loglik = float(np.sum(y * np.log(mu) + (1.0 - y) * np.log(1.0 - mu)))

        names = spec.coefficient_names
        return FitResult(
            coefficients={name: float(b) for name, b in zip(names, beta)},
            p_values={name: float(pv) for name, pv in zip(names, p)},
            aic=-2.0 * loglik + 2.0 * k,
            phylo_param=self.lambda_,
            n_taxa=n,
        )


def make_fitter(model: str = "pgls", lambda_: float | str = "ml") -> Fitter:
    name = model.lower()
    if name in {"pgls", "lm", "linear"}:
        return PGLSFitter(lambda_)
    if name in {"logistic", "glm", "binary"}:
        return PhyloLogisticFitter(1.0 if isinstance(lambda_, str) else float(lambda_))
    raise ValueError(f"Unsupported model: {model}")
