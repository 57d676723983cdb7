"""Error and warning taxonomy for the normative modelling engine.

Three kinds of problems surface from the engine:

* **Input errors** — missing or non-finite covariates, degenerate
  outcomes, rank-deficient designs, scoring requests expressed in a
  different term space.  Always fatal to the call.  Every input error
  subclasses :class:`ValueError` so that callers already guarding
  against bad arguments keep working, and carries a ``field``
  attribute naming the offending covariate or term.

* **Numerical errors** — a linear predictor whose inverse link is not
  finite.  Fatal to the affected chain or candidate model only; the
  surrounding pipeline decides whether anything survived.

* **Convergence warnings** — low or high acceptance after adaptation,
  poor between-chain mixing.  Emitted through :mod:`warnings` *and*
  attached to the returned result objects, so they are never lost
  when a caller filters warnings.
"""

from __future__ import annotations

from typing import Any


class InvalidCovariateError(ValueError):
    """A raw covariate is missing, non-numeric, or non-finite after transform.

    Attributes:
        field: Name of the offending covariate.
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Covariate '{field}': {message}")


class DegenerateModelError(ValueError):
    """The outcome has zero variance or the design matrix is rank deficient.

    Attributes:
        field: ``"y"`` for outcome problems, otherwise the name of a
            term involved in the rank deficiency (or ``None``).
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class CovariateMismatchError(ValueError):
    """A scoring request does not cover the fitted model's term space.

    Attributes:
        missing: Raw covariate names required by the fitted model but
            absent from the request.
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        self.field = self.missing[0] if self.missing else None
        names = ", ".join(repr(m) for m in self.missing)
        super().__init__(
            f"Scoring request is missing covariate(s) required by the "
            f"fitted model: {names}."
        )


class NumericOverflowError(ArithmeticError):
    """The linear predictor produced a non-finite mean parameter.

    Attributes:
        family: Name of the likelihood family whose inverse link failed.
    """

    def __init__(self, family: str, message: str | None = None) -> None:
        self.family = family
        super().__init__(
            message
            or (
                f"Non-finite mean parameter under the {family} inverse link; "
                f"the linear predictor is outside the representable range."
            )
        )


class SamplingCancelledError(RuntimeError):
    """Sampling was aborted through the caller's cancellation event.

    Attributes:
        completed: A ``PosteriorSamples`` built from the chains that
            reached ``Done`` before the abort, or ``None`` if none did.
    """

    def __init__(self, completed: Any = None) -> None:
        self.completed = completed
        n_done = 0 if completed is None else completed.n_chains
        super().__init__(
            f"MCMC sampling cancelled; {n_done} chain(s) had completed."
        )


class NonConvergenceWarning(UserWarning):
    """A chain's acceptance rate fell outside the configured band."""


class PoorMixingWarning(UserWarning):
    """A coefficient's scale-reduction statistic exceeds its threshold."""
