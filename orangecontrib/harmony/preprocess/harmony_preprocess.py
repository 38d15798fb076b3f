import numpy as np

from Orange.data import Table, Domain, ContinuousVariable
from Orange.preprocess.preprocess import Preprocess

from orangecontrib.harmony.preprocess.design import DesignMatrix
from orangecontrib.harmony.preprocess.errors import InvalidInputError
from orangecontrib.harmony.preprocess.harmony import HarmonyConfig, IntegrationLoop


class HarmonyModel:
    def __init__(self, batch_vars, config):
        """
        :param batch_vars: Orange variables holding batch labels (meta or class).
        :param config: HarmonyConfig.
        """
        self.batch_vars = batch_vars
        self.config = config
        self.result = None

    def transform(self, data):
        if not all(isinstance(a, ContinuousVariable) for a in data.domain.attributes):
            raise InvalidInputError("All attributes must be continuous.")
        labels = [data.get_column(v) for v in self.batch_vars]
        design = DesignMatrix.from_labels(labels, names=[v.name for v in self.batch_vars],
                                          dtype=np.dtype(self.config.dtype))
        self.result = IntegrationLoop(self.config).run(data.X, design)

        # fresh variables; corrected values must not be recomputed from the source
        attrs = [ContinuousVariable(a.name) for a in data.domain.attributes]
        new_domain = Domain(attrs, data.domain.class_vars, data.domain.metas)
        return Table.from_numpy(new_domain, self.result.embedding, data.Y, data.metas,
                                ids=data.ids)

    def __call__(self, data):
        return self.transform(data)


class HarmonyNormalizer(Preprocess):
    """ Harmony batch correction of an embedding (e.g. principal components). """

    def __init__(self, batch_vars=(), **options):
        """
        :param batch_vars: *names* of the batch variables (meta or class).
        :param options: HarmonyConfig options.
        """
        self.batch_vars = batch_vars
        self.config = HarmonyConfig(**options)

    def __call__(self, data):
        if len(self.batch_vars) == 0:
            return data
        try:
            vars_obj = [data.domain[b] for b in self.batch_vars]
        except (KeyError, IndexError) as e:
            raise InvalidInputError("Unknown batch variable: %s" % e) from e
        model = HarmonyModel(vars_obj, self.config)
        return model.transform(data)
