"""
Harmony integration of embeddings from several batches.

Soft clustering with a batch diversity penalty alternates with a per-cluster
linear correction until the objective stops changing.

Reference
---------
Korsunsky I, et al. Fast, sensitive and accurate integration of
single-cell data with Harmony. Nature Methods (2019).
"""
import logging
import warnings
from types import SimpleNamespace
from typing import List, NamedTuple, Optional

import numpy as np
from Orange.util import Enum

from orangecontrib.harmony.preprocess.clustering import SoftClusterer, l2norm_rows
from orangecontrib.harmony.preprocess.correction import BatchCorrector
from orangecontrib.harmony.preprocess.design import DesignMatrix
from orangecontrib.harmony.preprocess.errors import (
    DegenerateClusterError, InvalidInputError, LowDiversityWarning
)
from orangecontrib.harmony.preprocess.seeding import SEEDING_METHODS, get_seeding

log = logging.getLogger(__name__)

MAX_DEFAULT_CLUSTERS = 100
# Share of a cluster's mass above which it counts as a single-batch cluster
DOMINANT_SHARE = 0.99


def default_n_clusters(n_obs):
    """ Number of clusters proportional to sqrt(N), bounded by 100 and N. """
    return int(np.clip(round(np.sqrt(n_obs)), 1, min(MAX_DEFAULT_CLUSTERS, n_obs)))


class HarmonyConfig(SimpleNamespace):
    """ Integration options; class attributes hold the defaults. """
    n_clusters = None  # type: Optional[int]
    sigma = 0.1
    ridge_lambda = 1.0
    diversity_strength = 2.0
    tau = 0.0
    block_size = 0.05
    max_outer_iter = 10
    max_inner_iter = 20
    outer_tol = 1e-5
    inner_tol = 1e-4
    cosine_norm = True
    seeding = "kmeans"
    random_state = 0
    n_jobs = 1
    dtype = np.float64

    OPTIONS = ("n_clusters", "sigma", "ridge_lambda", "diversity_strength", "tau",
               "block_size", "max_outer_iter", "max_inner_iter", "outer_tol",
               "inner_tol", "cosine_norm", "seeding", "random_state", "n_jobs", "dtype")

    def __init__(self, **options):
        unknown = sorted(set(options) - set(self.OPTIONS))
        if unknown:
            raise InvalidInputError("Unknown options: %s." % ", ".join(unknown))
        super().__init__(**options)
        self.validate()

    def replace(self, **options):
        return HarmonyConfig(**{**vars(self), **options})

    def validate(self):
        if self.n_clusters is not None and self.n_clusters <= 0:
            raise DegenerateClusterError("n_clusters must be positive.")
        if np.any(np.asarray(self.sigma, dtype=float) <= 0):
            raise InvalidInputError("sigma must be positive.")
        if np.any(np.asarray(self.ridge_lambda, dtype=float) < 0):
            raise InvalidInputError("ridge_lambda must be non-negative.")
        if not 0 < self.block_size <= 1:
            raise InvalidInputError("block_size must be in (0, 1].")
        if self.max_outer_iter < 1 or self.max_inner_iter < 1:
            raise InvalidInputError("Iteration limits must be at least 1.")
        if self.outer_tol < 0 or self.inner_tol < 0 or self.tau < 0:
            raise InvalidInputError("Tolerances and tau must be non-negative.")
        if np.dtype(self.dtype) not in (np.dtype(np.float32), np.dtype(np.float64)):
            raise InvalidInputError("dtype must be float32 or float64.")
        if isinstance(self.seeding, str):
            if self.seeding not in SEEDING_METHODS:
                raise InvalidInputError("seeding must be one of %s or an object with "
                                        "a cluster method." % sorted(SEEDING_METHODS))
        elif not callable(getattr(self.seeding, "cluster", None)):
            raise InvalidInputError("seeding must provide cluster(embedding, n_clusters, "
                                    "random_state).")


class HarmonyResult(NamedTuple):
    embedding: np.ndarray
    converged: bool
    status: object
    n_iter: int
    objectives: List[float]
    assignments: Optional[np.ndarray]
    centroids: Optional[np.ndarray]


def _as_embedding(embedding, dtype):
    try:
        Z = np.array(embedding, dtype=dtype)
    except (TypeError, ValueError) as e:
        raise InvalidInputError("Embedding must be numeric: %s" % e) from e
    if Z.ndim != 2:
        raise InvalidInputError("Embedding must be a matrix, got %d dimension(s)." % Z.ndim)
    if Z.shape[0] == 0 or Z.shape[1] == 0:
        raise InvalidInputError("Embedding is empty (shape %s)." % (Z.shape,))
    if not np.all(np.isfinite(Z)):
        raise InvalidInputError("Embedding contains NaN or infinite values.")
    return Z


class IntegrationLoop:
    """
    Alternate soft clustering and correction until the objective converges.

    The loop moves through Initializing, then Clustering, Correcting and
    CheckConverged for every outer iteration, and ends in Converged,
    MaxIterationsReached or Cancelled. `callback(finished)` is called after
    each outer iteration; raising KeyboardInterrupt from it stops the run
    with the last complete correction.
    """
    State = Enum("State", ("Initializing", "Clustering", "Correcting", "CheckConverged",
                           "Converged", "MaxIterationsReached", "Cancelled"),
                 qualname="IntegrationLoop.State")
    Initializing, Clustering, Correcting, CheckConverged, \
        Converged, MaxIterationsReached, Cancelled = State

    def __init__(self, config=None, callback=None):
        self.config = config if config is not None else HarmonyConfig()
        self.callback = callback
        self.state = None
        self.objectives = []
        self.clusterer = None

    def _enter(self, state):
        self.state = state
        log.debug("Entering %s", state)

    def _converged(self):
        if len(self.objectives) < 2:
            return False
        prev, cur = self.objectives[-2], self.objectives[-1]
        rel = abs(cur - prev) / max(abs(prev), 1e-12)
        if rel < self.config.outer_tol:
            log.info("[stop] Convergence achieved: rel=%.3e < outer_tol=%g",
                     rel, self.config.outer_tol)
            return True
        return False

    def _log_objective(self, label):
        total, km, ent, cross = self.clusterer.objective_terms
        log.info("[%s] Obj=%.6e | kmeans=%.6e | entropy=%.6e | cross=%.6e",
                 label, total, km, ent, cross)

    def _check_diversity(self, design):
        comp = self.clusterer.batch_composition(design)
        populated = self.clusterer.R.sum(axis=0) >= 1.0
        varying = design.n_levels[design.covariate] > 1
        dominated = populated & (comp[:, varying] >= DOMINANT_SHARE).any(axis=1)
        if dominated.any():
            warnings.warn("%d of %d clusters contain a single batch; their batch "
                          "effects cannot be estimated."
                          % (dominated.sum(), len(dominated)), LowDiversityWarning)

    def run(self, embedding, design):
        """ Integrate `embedding` (N x D) given a DesignMatrix over its rows. """
        cfg = self.config
        dtype = np.dtype(cfg.dtype)
        self._enter(self.Initializing)
        self.objectives = []

        Z = _as_embedding(embedding, dtype)
        N = Z.shape[0]
        if design.n_obs != N:
            raise InvalidInputError("Embedding has %d rows but %d batch labels were given."
                                    % (N, design.n_obs))
        K = cfg.n_clusters if cfg.n_clusters is not None else default_n_clusters(N)
        if K <= 0 or K > N:
            raise DegenerateClusterError("Cannot form %d clusters from %d observations."
                                         % (K, N))

        if design.is_single_batch:
            log.info("A single batch; the embedding is returned unchanged.")
            self._enter(self.Converged)
            return HarmonyResult(Z, True, self.Converged, 0, [], None, None)

        Z_cos = l2norm_rows(Z) if cfg.cosine_norm else Z

        self.clusterer = SoftClusterer(
            K, sigma=cfg.sigma, diversity_strength=cfg.diversity_strength,
            tau=cfg.tau, block_size=cfg.block_size, max_iter=cfg.max_inner_iter,
            tol=cfg.inner_tol, normalize_centroids=cfg.cosine_norm,
            random_state=cfg.random_state)
        corrector = BatchCorrector(cfg.ridge_lambda, n_jobs=cfg.n_jobs)

        labels = np.asarray(get_seeding(cfg.seeding).cluster(Z_cos, K, cfg.random_state))
        centroids = self.clusterer.seed_centroids(Z_cos, labels)
        self.clusterer.initialize(Z_cos, centroids, design)
        self.objectives.append(self.clusterer.objective_terms[0])
        self._log_objective("init")

        Z_corr = Z
        status = self.MaxIterationsReached
        for it in range(1, cfg.max_outer_iter + 1):
            self._enter(self.Clustering)
            R, objective = self.clusterer.assign(Z_cos, design)
            self.objectives.append(objective)

            self._enter(self.Correcting)
            Z_corr = corrector.correct(Z, R, design)
            Z_cos = l2norm_rows(Z_corr) if cfg.cosine_norm else Z_corr
            self._log_objective("outer %02d" % it)

            self._enter(self.CheckConverged)
            if self._converged():
                status = self.Converged
                break
            if self.callback is not None:
                try:
                    self.callback(it / cfg.max_outer_iter)
                except KeyboardInterrupt:
                    log.info("Integration cancelled after %d iterations.", it)
                    status = self.Cancelled
                    break

        if status is self.MaxIterationsReached:
            log.warning("Did not converge in %d iterations.", cfg.max_outer_iter)
        self._enter(status)
        self._check_diversity(design)
        return HarmonyResult(Z_corr.astype(dtype, copy=False), status is self.Converged,
                             status, it, list(self.objectives),
                             self.clusterer.R.copy(), self.clusterer.centroids.copy())


def integrate(embedding, batch_labels, config=None, callback=None, **options):
    """
    Remove batch effects from an embedding.

    :param embedding: N x D matrix, e.g. principal components.
    :param batch_labels: N labels, a list of label vectors or a data frame
        (several covariates are corrected together).
    :param config: HarmonyConfig; keyword options override its values.
    :param callback: progress callback, see IntegrationLoop.
    :return: HarmonyResult; `embedding` keeps the input's shape and row order.
    """
    if config is None:
        config = HarmonyConfig(**options)
    elif options:
        config = config.replace(**options)
    design = DesignMatrix.from_labels(batch_labels, dtype=np.dtype(config.dtype))
    return IntegrationLoop(config, callback).run(embedding, design)
