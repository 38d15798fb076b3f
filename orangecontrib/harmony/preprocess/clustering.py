import logging

import numpy as np

from orangecontrib.harmony.preprocess.errors import DegenerateClusterError, InvalidInputError
from orangecontrib.harmony.preprocess.seeding import squared_distances

log = logging.getLogger(__name__)

# Clusters with less total assignment weight are considered empty
MIN_CLUSTER_WEIGHT = 1e-8
# Consecutive reseeds of the same cluster before giving up
MAX_RESEEDS = 3


def l2norm_rows(X, eps=1e-12):
    nrm = np.linalg.norm(X, axis=1, keepdims=True)
    return X / np.maximum(nrm, eps)


def _safe_entropy(R):
    return R * np.log(R, where=(R > 0), out=np.zeros_like(R))


class SoftClusterer:
    """
    Entropy regularized soft k-means with a batch diversity penalty.

    Each observation is softly assigned to every cluster. Assignments are
    penalized by ((E + 1) / (O + 1)) ** theta for the observation's levels,
    where O and E are the observed and expected (by global frequency) number
    of observations of a level in the cluster, so clusters dominated by one
    batch lose members of that batch.

    Parameters
    ----------
    n_clusters : number of clusters K
    sigma : softmax temperature, scalar or one value per cluster
    diversity_strength : theta; scalar, one value per covariate or per level
    tau : expected observations per cluster; discounts theta for small batches
    block_size : fraction of observations updated at once
    max_iter : maximum number of inner iterations in `assign`
    tol : stop when the Frobenius norm of the change of R falls below
    normalize_centroids : keep centroids on the unit sphere (cosine distance)
    random_state : seed for the block order

    Attributes
    ----------
    centroids : K x D
    R : N x K soft assignments, rows sum to 1
    O : K x B observed level counts
    E : K x B expected level counts
    dist : N x K squared distances to centroids
    """

    def __init__(self, n_clusters, sigma=0.1, diversity_strength=2.0, tau=0.0,
                 block_size=0.05, max_iter=20, tol=1e-4, normalize_centroids=True,
                 random_state=None):
        if n_clusters <= 0:
            raise DegenerateClusterError("Number of clusters must be positive, got %d."
                                         % n_clusters)
        self.n_clusters = n_clusters
        self.sigma = sigma
        self.diversity_strength = diversity_strength
        self.tau = tau
        self.block_size = block_size
        self.max_iter = max_iter
        self.tol = tol
        self.normalize_centroids = normalize_centroids
        self.rng = np.random.default_rng(random_state)

        self.centroids = None
        self.R = None
        self.O = None
        self.E = None
        self.dist = None
        self.theta = None
        self.objective_terms = None
        self.n_iter_ = 0
        self._reseeds = np.zeros(n_clusters, dtype=int)

    def _prepare(self, design, dtype):
        K = self.n_clusters
        theta = design.expand(self.diversity_strength, "diversity_strength")
        if self.tau > 0:
            theta = theta * (1.0 - np.exp(-(design.counts / (K * self.tau)) ** 2))
        self.theta = theta.astype(dtype)

        if np.isscalar(self.sigma):
            sigma = np.full(K, float(self.sigma))
        else:
            sigma = np.asarray(self.sigma, dtype=float)
            if sigma.shape != (K,):
                raise InvalidInputError("sigma: expected a scalar or %d values, got shape %s."
                                        % (K, sigma.shape))
        if np.any(sigma <= 0):
            raise InvalidInputError("sigma must be positive.")
        self._sigma = sigma.astype(dtype)
        self._pr = design.proportions.astype(dtype)

    def seed_centroids(self, embedding, labels):
        """ Centroids as means of a hard clustering; empty clusters are reseeded. """
        K, D = self.n_clusters, embedding.shape[1]
        centroids = np.zeros((K, D), dtype=embedding.dtype)
        empty = np.zeros(K, dtype=bool)
        for k in range(K):
            members = labels == k
            if members.any():
                centroids[k] = embedding[members].mean(axis=0)
            else:
                empty[k] = True
        if self.normalize_centroids:
            centroids = l2norm_rows(centroids)
        if empty.any():
            self._farthest_points(embedding, centroids, empty)
        return centroids

    def initialize(self, embedding, centroids, design):
        """ Plain softmax assignments to the given centroids. """
        N, D = embedding.shape
        if self.n_clusters > N:
            raise DegenerateClusterError("%d clusters cannot be formed from %d observations."
                                         % (self.n_clusters, N))
        if centroids.shape != (self.n_clusters, D):
            raise InvalidInputError("Centroids must have shape %s, got %s."
                                    % ((self.n_clusters, D), centroids.shape))
        self._prepare(design, embedding.dtype)
        self.centroids = np.array(centroids, dtype=embedding.dtype)
        if self.normalize_centroids:
            self.centroids = l2norm_rows(self.centroids)
        self.dist = squared_distances(embedding, self.centroids)
        scores = self._scores(self.dist)
        scores -= scores.max(axis=1, keepdims=True)
        self.R = np.exp(scores)
        self.R /= self.R.sum(axis=1, keepdims=True)
        self._update_counts(design)
        self.objective_terms = self.objective(design)
        return self.R

    def _scores(self, dist):
        return -dist / self._sigma[None, :]

    def _update_counts(self, design):
        self.E = np.outer(self.R.sum(axis=0), self._pr)
        self.O = self.R.T @ design.Phi

    def _farthest_points(self, embedding, centroids, degenerate):
        """ Move degenerate centroids to the observations farthest from the others. """
        healthy = np.flatnonzero(~degenerate)
        if healthy.size:
            nearest = squared_distances(embedding, centroids[healthy]).min(axis=1)
        else:
            nearest = squared_distances(embedding, embedding.mean(axis=0, keepdims=True))[:, 0]
        used = set()
        for k in np.flatnonzero(degenerate):
            idx = next(i for i in np.argsort(-nearest, kind="stable") if i not in used)
            used.add(idx)
            centroids[k] = embedding[idx]
            if self.normalize_centroids:
                centroids[k] = l2norm_rows(centroids[k][None, :])[0]
            nearest = np.minimum(nearest, squared_distances(embedding, centroids[k][None, :])[:, 0])
            log.debug("Cluster %d reseeded at observation %d", k, idx)
        return centroids

    def update_centroids(self, embedding):
        """ Assignment-weighted means of the embedding. """
        weights = self.R.sum(axis=0)
        degenerate = weights < MIN_CLUSTER_WEIGHT
        Y = self.R.T @ embedding
        Y /= np.maximum(weights, MIN_CLUSTER_WEIGHT)[:, None]
        if self.normalize_centroids:
            Y = l2norm_rows(Y)

        self._reseeds[~degenerate] = 0
        if degenerate.any():
            self._reseeds[degenerate] += 1
            if np.any(self._reseeds > MAX_RESEEDS):
                raise DegenerateClusterError(
                    "Clusters %s stayed empty after %d reseeds."
                    % (np.flatnonzero(self._reseeds > MAX_RESEEDS).tolist(), MAX_RESEEDS))
            self._farthest_points(embedding, Y, degenerate)
        self.centroids = Y
        return Y

    def update_assignments(self, design):
        """ Recompute R block by block, penalizing over-represented levels. """
        N = self.R.shape[0]
        Phi = design.Phi
        scores = self._scores(self.dist)
        n_blocks = int(np.ceil(1.0 / self.block_size))
        for idx in np.array_split(self.rng.permutation(N), n_blocks):
            if idx.size == 0:
                continue
            Phi_b = Phi[idx]

            # counts without the block
            R_b = self.R[idx]
            self.E -= np.outer(R_b.sum(axis=0), self._pr)
            self.O -= R_b.T @ Phi_b

            log_penalty = self.theta[None, :] * np.log((self.E + 1.0) / (self.O + 1.0))
            logits = scores[idx] + Phi_b @ log_penalty.T
            logits -= logits.max(axis=1, keepdims=True)
            R_b = np.exp(logits)
            R_b /= R_b.sum(axis=1, keepdims=True)
            self.R[idx] = R_b

            self.E += np.outer(R_b.sum(axis=0), self._pr)
            self.O += R_b.T @ Phi_b
        return self.R

    def objective(self, design):
        """ Total objective and its k-means, entropy and diversity terms. """
        kmeans_error = float(np.sum(self.R * self.dist))
        entropy = float(np.sum(_safe_entropy(self.R) * self._sigma[None, :]))
        log_ratio = self.theta[None, :] * np.log((self.O + 1.0) / (self.E + 1.0))
        cross = float(np.sum(self.R * self._sigma[None, :] * (design.Phi @ log_ratio.T)))
        return kmeans_error + entropy + cross, kmeans_error, entropy, cross

    def assign(self, embedding, design):
        """
        Refine the soft assignments of `embedding`, starting from the current
        state, and return (R, objective).
        """
        self._update_counts(design)
        for it in range(1, self.max_iter + 1):
            self.update_centroids(embedding)
            self.dist = squared_distances(embedding, self.centroids)
            R_old = self.R.copy()
            self.update_assignments(design)
            delta = np.linalg.norm(self.R - R_old)
            log.debug("[inner %02d] |dR|=%.3e", it, delta)
            if delta < self.tol:
                break
        self.n_iter_ = it
        self.objective_terms = self.objective(design)
        return self.R, self.objective_terms[0]

    def batch_composition(self, design):
        """ Share of each cluster's mass per level, within every covariate. """
        comp = np.zeros_like(self.O)
        for c in range(design.n_covariates):
            cols = design.covariate == c
            total = self.O[:, cols].sum(axis=1, keepdims=True)
            comp[:, cols] = self.O[:, cols] / np.maximum(total, 1e-12)
        return comp
