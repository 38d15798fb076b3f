import numpy as np
from joblib import Parallel, delayed

from orangecontrib.harmony.preprocess.clustering import MIN_CLUSTER_WEIGHT
from orangecontrib.harmony.preprocess.errors import InvalidInputError, SingularFitError


def ridge_penalty(ridge_lambda, n_batches):
    """ Diagonal penalty over [intercept, levels]; the intercept is not penalized. """
    if np.isscalar(ridge_lambda):
        diag = np.full(n_batches + 1, float(ridge_lambda))
        diag[0] = 0.0
    else:
        lamb = np.asarray(ridge_lambda, dtype=float)
        if lamb.ndim == 1 and lamb.size == n_batches:
            diag = np.concatenate(([0.0], lamb))
        elif lamb.ndim == 1 and lamb.size == n_batches + 1:
            diag = lamb.copy()
        else:
            raise InvalidInputError("ridge_lambda: expected a scalar or a vector of "
                                    "length %d or %d, got shape %s."
                                    % (n_batches, n_batches + 1, lamb.shape))
    if np.any(diag < 0):
        raise InvalidInputError("ridge_lambda must be non-negative.")
    return np.diag(diag)


def fit_cluster(Z, r, X, penalty):
    """
    Weighted ridge regression of Z on the model matrix X = [1, Phi].

    :param Z: N x D original embedding.
    :param r: assignment weights of the cluster (length N).
    :param X: N x (B + 1) model matrix.
    :param penalty: (B + 1) x (B + 1) diagonal penalty.
    :return: (B + 1) x D coefficients, intercept first; zero for an empty cluster.
    """
    if r.sum() < MIN_CLUSTER_WEIGHT:
        return np.zeros((X.shape[1], Z.shape[1]), dtype=Z.dtype)
    X_r = X * r[:, None]
    A = X_r.T @ X + penalty
    if np.any(np.diag(penalty)[1:] <= 0) and \
            np.linalg.matrix_rank(A) < A.shape[0]:
        raise SingularFitError("Weighted design is rank deficient; use ridge_lambda > 0.")
    try:
        return np.linalg.solve(A, X_r.T @ Z)
    except np.linalg.LinAlgError as e:
        raise SingularFitError(str(e)) from e


class BatchCorrector:
    """
    Mixture of experts linear correction.

    For every cluster, a ridge regression of the original coordinates on
    the batch indicators (plus a shared intercept) is fit with the cluster's
    assignment weights. The batch terms, weighted by assignment, are
    subtracted from the original coordinates, so observations shared by
    several clusters receive a blended correction.
    """

    def __init__(self, ridge_lambda=1.0, n_jobs=1):
        self.ridge_lambda = ridge_lambda
        self.n_jobs = n_jobs

    def coefficients(self, original, R, design):
        """ Per-cluster (B + 1) x D coefficients, intercept row first. """
        X = design.with_intercept().astype(original.dtype, copy=False)
        penalty = ridge_penalty(self.ridge_lambda, design.n_batches).astype(original.dtype)
        return Parallel(n_jobs=self.n_jobs, prefer="threads")(
            delayed(fit_cluster)(original, R[:, k], X, penalty)
            for k in range(R.shape[1]))

    def correct(self, original, R, design):
        """ Return a corrected copy of `original`. """
        if R.shape[0] != original.shape[0]:
            raise InvalidInputError("Assignments have %d rows, embedding has %d."
                                    % (R.shape[0], original.shape[0]))
        X = design.with_intercept().astype(original.dtype, copy=False)
        corrected = original.copy()
        for k, W in enumerate(self.coefficients(original, R, design)):
            W[0, :] = 0.0
            corrected -= (X * R[:, k][:, None]) @ W
        return corrected
