"""Formatted ASCII table display utilities for normative-model results.

These tables mirror the statsmodels summary style: a header panel with
the settings that produced the result, a columnar body, and a Notes
section that appears only when something deserves attention (failed
candidate models, poor mixing, acceptance rates outside the band).
Every table is 80 columns wide.
"""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ._results import ConvergenceReport, ScoringResult, SelectionResult

_W = 80


def _truncate(name: str, max_len: int) -> str:
    """Truncate *name* to *max_len*, appending ``'...'`` if needed."""
    if len(name) <= max_len:
        return name
    return name[: max_len - 3] + "..."


def _fmt(val: float, spec: str = ".4f") -> str:
    """Format a number, rendering NaN as ``'N/A'``."""
    if val is None or (isinstance(val, float) and np.isnan(val)):
        return "N/A"
    return format(val, spec)


def _wrap(text: str, width: int = _W, indent: int = 2) -> str:
    """Word-wrap *text*, indenting continuation lines only."""
    return textwrap.fill(
        text,
        width=width,
        initial_indent="",
        subsequent_indent=" " * indent,
    )


def _title(title: str) -> None:
    print("=" * _W)
    for line in textwrap.wrap(title, width=_W - 2):
        print(f"{line:^{_W}}")
    print("=" * _W)


def _header(rows: list[tuple[str, str, str, str]]) -> None:
    """Two-column ``label: value`` header panel."""
    for ll, lv, rl, rv in rows:
        left = f"{ll:<18}{lv:<22}" if ll else " " * 40
        right = f"{rl:<18}{rv:>22}" if rl else ""
        print(f"{left}{right}".rstrip())


def _notes(notes: list[str]) -> None:
    if not notes:
        return
    print("-" * _W)
    print("Notes")
    print("-" * _W)
    for i, note in enumerate(notes, 1):
        print(_wrap(f"[{i}] {note}", indent=4))


def print_pip_table(
    selection: SelectionResult,
    *,
    title: str = "Posterior Inclusion Probabilities",
    max_models: int = 5,
) -> None:
    """Print the PIP table and the most probable models.

    Terms retained by the decision rule are flagged ``*``; constituent
    main effects pulled in by a retained interaction are flagged ``+``.

    Args:
        selection: Result of :func:`~bayesian_norms.select_model`.
        title: Title for the output table.
        max_models: Number of top models to list (0 to skip).
    """
    _title(title)
    _header(
        [
            ("Family:", selection.family.name, "Strategy:", selection.strategy),
            (
                "Threshold:",
                f"{selection.threshold:g}",
                "Models evaluated:",
                str(selection.n_models_evaluated),
            ),
            (
                "Prior precision:",
                f"{selection.prior_precision:g}",
                "Concentration:",
                f"{selection.concentration:g}",
            ),
        ]
    )
    print("-" * _W)
    tc = 50
    print(f"{'Term':<{tc}}{'PIP':>12}{'Included':>18}")
    print("-" * _W)
    recommended = set(selection.recommended.terms)
    for term, pip in zip(selection.pip_table["term"], selection.pip_table["pip"]):
        if pip > selection.threshold:
            flag = "*"
        elif term in recommended:
            flag = "+"
        else:
            flag = ""
        print(f"{_truncate(str(term), tc - 2):<{tc}}{pip:>12.4f}{flag:>18}")

    if max_models > 0:
        print("-" * _W)
        print(f"{'Top models':<{tc}}{'Probability':>12}{'log m(y)':>18}")
        print("-" * _W)
        top = selection.model_probabilities.head(max_models)
        for terms, prob, lml in zip(
            top["terms"], top["probability"], top["log_marginal_likelihood"]
        ):
            label = " + ".join(terms) if terms else "(intercept only)"
            print(
                f"{_truncate(label, tc - 2):<{tc}}{prob:>12.4f}{_fmt(lml, '.2f'):>18}"
            )

    notes = [
        "* PIP above threshold; + constituent of a retained interaction."
    ]
    if selection.failed_models:
        names = ["(" + ", ".join(m) + ")" for m in selection.failed_models[:3]]
        more = len(selection.failed_models) - len(names)
        notes.append(
            f"{len(selection.failed_models)} candidate model(s) could not be "
            f"evaluated and received zero probability: {', '.join(names)}"
            + (f" and {more} more." if more > 0 else ".")
        )
    if selection.strategy == "stochastic":
        notes.append(
            "Model probabilities are renormalised over the models visited "
            "by stochastic search."
        )
    _notes(notes)
    print("=" * _W)


def print_convergence_table(
    report: ConvergenceReport,
    *,
    title: str = "Posterior Summary",
) -> None:
    """Print per-coefficient estimates, intervals and diagnostics.

    Args:
        report: Result of :func:`~bayesian_norms.summarize_posterior`.
        title: Title for the output table.
    """
    _title(title)
    rates = np.asarray(report.acceptance_rates, dtype=float)
    finite = rates[np.isfinite(rates)]
    acc = f"{finite.mean():.3f}" if finite.size else "N/A"
    _header(
        [
            ("Chains:", str(report.n_chains), "Draws per chain:", str(report.n_draws)),
            ("Estimator:", report.estimator, "Interval:", report.interval),
            (
                "Level:",
                f"{report.level:g}",
                "Mean acceptance:",
                acc,
            ),
        ]
    )
    print("-" * _W)
    lo_hdr = f"{(1 - report.level) / 2 * 100:g}%"
    hi_hdr = f"{(1 + report.level) / 2 * 100:g}%"
    tc = 20
    print(
        f"{'Term':<{tc}}{'Estimate':>10}{'SD':>9}{'MCSE':>9}"
        f"{lo_hdr:>9}{hi_hdr:>9}{'ESS':>8}{'R-hat':>6}"
    )
    print("-" * _W)
    for row in report.table.itertuples(index=False):
        rhat = _fmt(row.rhat, ".2f")
        print(
            f"{_truncate(str(row.term), tc - 2):<{tc}}"
            f"{_fmt(row.estimate):>10}{_fmt(row.sd):>9}{_fmt(row.mcse):>9}"
            f"{_fmt(row.lower, '.3f'):>9}{_fmt(row.upper, '.3f'):>9}"
            f"{_fmt(row.ess, '.0f'):>8}{rhat:>6}"
        )
    _notes([w.message for w in report.warnings])
    print("=" * _W)


def print_scoring_result(
    result: ScoringResult,
    *,
    title: str = "Normative Score",
) -> None:
    """Print the normative probability of one observed score."""
    _title(title)
    _header(
        [
            (
                "Observed score:",
                f"{result.observed_score:g}",
                "Posterior draws:",
                str(result.n_samples),
            ),
            (
                "P(Y <= score):",
                f"{result.probability:.4f}",
                "MC std. error:",
                f"{result.mc_se:.4f}",
            ),
            ("Percentile:", f"{result.percentile:.1f}", "", ""),
        ]
    )
    print("=" * _W)
