from orangecontrib.harmony.preprocess import (
    DesignMatrix, HarmonyConfig, HarmonyNormalizer, HarmonyResult, integrate,
    integrate_anndata
)
