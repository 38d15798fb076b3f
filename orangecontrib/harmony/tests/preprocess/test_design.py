import unittest

import numpy as np
import numpy.testing as npt
import pandas as pd

from orangecontrib.harmony.preprocess.design import DesignMatrix
from orangecontrib.harmony.preprocess.errors import InvalidInputError


class TestDesignMatrix(unittest.TestCase):

    def test_one_hot(self):
        design = DesignMatrix.from_labels(["b", "a", "b", "c"])
        npt.assert_array_equal(design.levels[0], ["a", "b", "c"])
        npt.assert_array_equal(design.Phi, [[0, 1, 0],
                                            [1, 0, 0],
                                            [0, 1, 0],
                                            [0, 0, 1]])
        npt.assert_array_equal(design.counts, [1, 2, 1])
        npt.assert_allclose(design.proportions, [0.25, 0.5, 0.25])
        npt.assert_array_equal(design.Phi.sum(axis=1), np.ones(4))
        self.assertEqual(design.n_obs, 4)
        self.assertEqual(design.n_batches, 3)
        self.assertFalse(design.is_single_batch)

    def test_numeric_labels(self):
        design = DesignMatrix.from_labels(np.array([2.0, 0.0, 2.0]))
        npt.assert_array_equal(design.counts, [1, 2])

    def test_multiple_covariates(self):
        design = DesignMatrix.from_labels([["x", "y", "x"], [1, 1, 2]],
                                          names=["batch", "donor"])
        self.assertEqual(design.n_covariates, 2)
        self.assertEqual(design.names, ["batch", "donor"])
        npt.assert_array_equal(design.n_levels, [2, 2])
        npt.assert_array_equal(design.covariate, [0, 0, 1, 1])
        npt.assert_array_equal(design.Phi.sum(axis=1), [2, 2, 2])
        npt.assert_array_equal(design.Phi[:, :2].sum(axis=1), [1, 1, 1])

    def test_data_frame(self):
        df = pd.DataFrame({"batch": ["a", "b", "a"],
                           "tech": pd.Categorical(["v2", "v2", "v2"])})
        design = DesignMatrix.from_labels(df)
        self.assertEqual(design.names, ["batch", "tech"])
        npt.assert_array_equal(design.counts, [2, 1, 3])
        self.assertFalse(design.is_single_batch)

    def test_single_batch(self):
        design = DesignMatrix.from_labels(["a"] * 5)
        self.assertTrue(design.is_single_batch)
        npt.assert_array_equal(design.Phi, np.ones((5, 1)))

    def test_with_intercept(self):
        design = DesignMatrix.from_labels(["a", "b"])
        npt.assert_array_equal(design.with_intercept(), [[1, 1, 0], [1, 0, 1]])

    def test_expand(self):
        design = DesignMatrix.from_labels([["x", "y", "z"], [1, 2, 2]])
        npt.assert_array_equal(design.expand(2), [2, 2, 2, 2, 2])
        npt.assert_array_equal(design.expand([1, 3]), [1, 1, 1, 3, 3])
        npt.assert_array_equal(design.expand([1, 2, 3, 4, 5]), [1, 2, 3, 4, 5])
        self.assertRaises(InvalidInputError, design.expand, [1, 2, 3])

    def test_empty(self):
        self.assertRaises(InvalidInputError, DesignMatrix.from_labels, [])

    def test_missing_labels(self):
        for labels in (["a", None, "b"], [1.0, np.nan, 2.0], ["a", pd.NA, "b"]):
            with self.assertRaises(InvalidInputError):
                DesignMatrix.from_labels(labels)

    def test_mismatched_covariates(self):
        with self.assertRaises(InvalidInputError):
            DesignMatrix.from_labels([["a", "b", "a"], ["x", "y"]])

    def test_invalid_input_is_value_error(self):
        with self.assertRaises(ValueError):
            DesignMatrix.from_labels([])


if __name__ == "__main__":
    unittest.main()
