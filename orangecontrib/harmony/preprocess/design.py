import numpy as np
import pandas as pd

from orangecontrib.harmony.preprocess.errors import InvalidInputError


def _split_covariates(labels):
    """ Return a list of (name, values) for a single label vector,
        a list of label vectors or a data frame. """
    if isinstance(labels, pd.DataFrame):
        return [(str(c), labels[c].to_numpy()) for c in labels.columns]
    if isinstance(labels, (list, tuple)) and len(labels) \
            and all(pd.api.types.is_list_like(v) for v in labels):
        return [(None, np.asarray(v, dtype=object) if not isinstance(v, pd.Series)
                 else v.to_numpy()) for v in labels]
    if isinstance(labels, pd.Series):
        return [(labels.name, labels.to_numpy())]
    return [(None, np.asarray(labels, dtype=object))]


class DesignMatrix:
    """
    One-hot encoding of categorical covariates (batches).

    Attributes
    ----------
    Phi : N x B indicator matrix; columns of each covariate form a block
    levels : list of level arrays, one per covariate (sorted)
    names : list of covariate names
    counts : number of observations per level (length B)
    covariate : index of the covariate each column belongs to (length B)
    """

    def __init__(self, Phi, levels, names):
        self.Phi = Phi
        self.levels = levels
        self.names = names
        self.counts = Phi.sum(axis=0)
        self.n_levels = np.array([len(lev) for lev in levels])
        self.covariate = np.repeat(np.arange(len(levels)), self.n_levels)

    @classmethod
    def from_labels(cls, labels, names=None, dtype=float):
        """
        Encode labels.

        :param labels: a label vector, a list of label vectors or a data frame
            with one column per covariate.
        :param names: optional covariate names.
        :param dtype: float type of the indicator matrix.
        """
        covariates = _split_covariates(labels)
        if names is not None:
            if len(names) != len(covariates):
                raise InvalidInputError("Expected %d covariate names, got %d."
                                        % (len(covariates), len(names)))
            covariates = [(n, v) for n, (_, v) in zip(names, covariates)]

        n_obs = {len(values) for _, values in covariates}
        if len(n_obs) > 1:
            raise InvalidInputError("Covariates differ in length: %s." % sorted(n_obs))
        N = n_obs.pop()
        if N == 0:
            raise InvalidInputError("No observations.")

        blocks, levels, cov_names = [], [], []
        for i, (name, values) in enumerate(covariates):
            if values.ndim != 1:
                raise InvalidInputError("Batch labels must be one-dimensional.")
            missing = pd.isna(values)
            if missing.any():
                raise InvalidInputError(
                    "Covariate %s has %d missing labels (first at row %d)."
                    % (name or i, missing.sum(), np.flatnonzero(missing)[0]))
            codes, uniques = pd.factorize(values, sort=True)
            block = np.zeros((N, len(uniques)), dtype=dtype)
            block[np.arange(N), codes] = 1.0
            blocks.append(block)
            levels.append(np.asarray(uniques))
            cov_names.append(name if name is not None else "covariate%d" % i)

        return cls(np.hstack(blocks), levels, cov_names)

    @property
    def n_obs(self):
        return self.Phi.shape[0]

    @property
    def n_batches(self):
        return self.Phi.shape[1]

    @property
    def n_covariates(self):
        return len(self.levels)

    @property
    def proportions(self):
        """ Global frequency of every level within its covariate. """
        return self.counts / self.n_obs

    @property
    def is_single_batch(self):
        return bool(np.all(self.n_levels == 1))

    def with_intercept(self):
        """ Model matrix [1, Phi] for the per-cluster regressions. """
        return np.hstack((np.ones((self.n_obs, 1), dtype=self.Phi.dtype), self.Phi))

    def expand(self, value, name="value"):
        """ Broadcast a scalar, per-covariate or per-level value to all levels. """
        if np.isscalar(value):
            return np.full(self.n_batches, float(value))
        value = np.asarray(value, dtype=float)
        if value.ndim == 1 and value.size == self.n_covariates:
            return value[self.covariate]
        if value.ndim == 1 and value.size == self.n_batches:
            return value
        raise InvalidInputError("%s: expected a scalar or a vector of length %d or %d, "
                                "got shape %s." % (name, self.n_covariates,
                                                   self.n_batches, value.shape))

    def __repr__(self):
        return "DesignMatrix(n_obs=%d, levels=%s)" % (
            self.n_obs, dict(zip(self.names, self.n_levels.tolist())))
