"""Ruleset loading, rule evaluation and result aggregation."""

from apiconform.validation.aggregator import (
    ValidationAggregator,
    evaluate_documents,
)
from apiconform.validation.evaluator import (
    RuleEvaluator,
    SpectralCliEvaluator,
    parse_spectral_output,
)
from apiconform.validation.rulesets import load_ruleset_bindings

__all__ = [
    "RuleEvaluator",
    "SpectralCliEvaluator",
    "ValidationAggregator",
    "evaluate_documents",
    "load_ruleset_bindings",
    "parse_spectral_output",
]
