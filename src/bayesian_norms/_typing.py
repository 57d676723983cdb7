"""Shared type aliases for the bayesian_norms package."""

from collections.abc import Mapping

import numpy as np
import pandas as pd

# Array-like inputs accepted by the public API.
ArrayLike = np.ndarray | pd.DataFrame | pd.Series

# One individual's raw covariate values, keyed by covariate name.
CovariateRecord = Mapping[str, float | int | str] | pd.Series
