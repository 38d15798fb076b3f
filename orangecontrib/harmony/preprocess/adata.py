from orangecontrib.harmony.preprocess.errors import InvalidInputError
from orangecontrib.harmony.preprocess.harmony import integrate


def integrate_anndata(adata, key, basis="X_pca", adjusted_basis="X_pca_harmony", **options):
    """
    Correct `adata.obsm[basis]` for the covariate(s) `key` of `adata.obs`.

    The corrected embedding is stored in `adata.obsm[adjusted_basis]`.

    :param adata: AnnData object.
    :param key: name or list of names of categorical columns in `adata.obs`.
    :param options: HarmonyConfig options.
    :return: HarmonyResult.
    """
    keys = [key] if isinstance(key, str) else list(key)
    missing = [k for k in keys if k not in adata.obs.columns]
    if missing:
        raise InvalidInputError("Columns not in adata.obs: %s." % ", ".join(missing))
    if basis not in adata.obsm:
        raise InvalidInputError("Basis %s not in adata.obsm." % basis)

    result = integrate(adata.obsm[basis], adata.obs[keys], **options)
    adata.obsm[adjusted_basis] = result.embedding
    return result
