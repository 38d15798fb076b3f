from orangecontrib.harmony.preprocess.errors import (
    HarmonyError, InvalidInputError, DegenerateClusterError, SingularFitError,
    LowDiversityWarning
)
from orangecontrib.harmony.preprocess.design import DesignMatrix
from orangecontrib.harmony.preprocess.seeding import (
    KMeansSeeding, KMeansPlusPlusSeeding, SEEDING_METHODS
)
from orangecontrib.harmony.preprocess.clustering import SoftClusterer
from orangecontrib.harmony.preprocess.correction import BatchCorrector
from orangecontrib.harmony.preprocess.harmony import (
    HarmonyConfig, HarmonyResult, IntegrationLoop, default_n_clusters, integrate
)
from orangecontrib.harmony.preprocess.harmony_preprocess import HarmonyModel, HarmonyNormalizer
from orangecontrib.harmony.preprocess.adata import integrate_anndata
