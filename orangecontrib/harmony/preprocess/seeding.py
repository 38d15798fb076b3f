"""
Initial hard clusterings used to seed the centroids of the soft clustering.

A seeding strategy is any object with a method
``cluster(embedding, n_clusters, random_state) -> labels``.
"""
import numpy as np
from sklearn.cluster import KMeans


def squared_distances(X, Y):
    """ Squared Euclidean distances between rows of X and rows of Y. """
    d = (X * X).sum(axis=1)[:, None] + (Y * Y).sum(axis=1)[None, :] - 2.0 * X @ Y.T
    return np.maximum(d, 0.0)


class KMeansSeeding:
    """ Lloyd's k-means with several restarts (scikit-learn). """

    def __init__(self, n_init=10, max_iter=25):
        self.n_init = n_init
        self.max_iter = max_iter

    def cluster(self, embedding, n_clusters, random_state=None):
        model = KMeans(n_clusters=n_clusters, n_init=self.n_init,
                       max_iter=self.max_iter, random_state=random_state)
        return model.fit_predict(embedding)


class KMeansPlusPlusSeeding:
    """ D^2 sampling of seeds; every observation joins its nearest seed. """

    def cluster(self, embedding, n_clusters, random_state=None):
        rng = np.random.default_rng(random_state)
        N = embedding.shape[0]
        seeds = [rng.integers(0, N)]
        D = squared_distances(embedding, embedding[seeds[0]][None, :])[:, 0]
        for _ in range(1, n_clusters):
            total = D.sum()
            if total > 0:
                idx = rng.choice(N, p=D / total)
            else:
                # all remaining points coincide with a seed
                idx = rng.integers(0, N)
            seeds.append(idx)
            D = np.minimum(D, squared_distances(embedding, embedding[idx][None, :])[:, 0])
        return np.argmin(squared_distances(embedding, embedding[seeds]), axis=1)


SEEDING_METHODS = {
    "kmeans": KMeansSeeding(),
    "kmeans++": KMeansPlusPlusSeeding(),
}


def get_seeding(seeding):
    if isinstance(seeding, str):
        return SEEDING_METHODS[seeding]
    return seeding
