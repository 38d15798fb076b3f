import numpy as np


class HarmonyError(Exception):
    """ Base class for errors raised during integration. """


class InvalidInputError(HarmonyError, ValueError):
    """ Malformed embedding, batch labels or options. """


class DegenerateClusterError(HarmonyError, ValueError):
    """ Clusters cannot be kept populated (e.g. more clusters than observations). """


class SingularFitError(HarmonyError, np.linalg.LinAlgError):
    """ Unregularized per-cluster regression with a rank deficient design. """


class LowDiversityWarning(Warning):
    pass
