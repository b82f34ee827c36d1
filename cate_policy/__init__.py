"""CATE targeting engine — estimate effects, validate them, and turn them into profitable policies."""

from cate_policy.config import EngineConfig
from cate_policy.data_loader import (
    UnitTable,
    generate_synthetic_experiment,
    load_external_scores,
    load_units,
    read_units_csv,
)
from cate_policy.errors import (
    BucketingError,
    CATEPolicyError,
    EstimationError,
    SplitError,
    UndefinedStatistic,
)
from cate_policy.lift import assign_groups, lift_table, welch_effect
from cate_policy.model import (
    BoostedSLearner,
    CATEEstimator,
    ExternalScoreModel,
    FittedModel,
    FittedOutcomeModel,
    InteractionLasso,
    InteractionOLS,
    make_estimator,
)
from cate_policy.persistence import (
    load_model,
    load_score_table,
    save_model,
    save_score_table,
)
from cate_policy.pipeline import (
    EvaluationReport,
    evaluate_scores,
    run_split_validation,
    run_temporal_validation,
)
from cate_policy.policy import (
    compare_policies,
    evaluate_threshold_policy,
    ipw_profit,
    profit_curve,
    top_percent_profit,
)
from cate_policy.sampling import Cohort, split_sample
from cate_policy.scoring import counterfactual_uplift, score_column, score_units

__all__ = [
    "BoostedSLearner",
    "BucketingError",
    "CATEEstimator",
    "CATEPolicyError",
    "Cohort",
    "EngineConfig",
    "EstimationError",
    "EvaluationReport",
    "ExternalScoreModel",
    "FittedModel",
    "FittedOutcomeModel",
    "InteractionLasso",
    "InteractionOLS",
    "SplitError",
    "UndefinedStatistic",
    "UnitTable",
    "assign_groups",
    "compare_policies",
    "counterfactual_uplift",
    "evaluate_scores",
    "evaluate_threshold_policy",
    "generate_synthetic_experiment",
    "ipw_profit",
    "lift_table",
    "load_external_scores",
    "load_model",
    "load_score_table",
    "load_units",
    "make_estimator",
    "profit_curve",
    "read_units_csv",
    "run_split_validation",
    "run_temporal_validation",
    "save_model",
    "save_score_table",
    "score_column",
    "score_units",
    "split_sample",
    "top_percent_profit",
    "welch_effect",
]
