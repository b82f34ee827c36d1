"""
Streamlit Dashboard — CATE Targeting Engine.

Fits interaction models on a training cohort, validates them with lift
tables on the validation cohort, and compares profit-maximising targeting
policies.
"""

from __future__ import annotations

import logging

import pandas as pd
import streamlit as st

from cate_policy.config import KNOWN_ESTIMATORS, PROPENSITY_COL, EngineConfig
from cate_policy.data_loader import UnitTable, generate_synthetic_experiment, load_units
from cate_policy.errors import CATEPolicyError
from cate_policy.pipeline import EvaluationReport, run_split_validation

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# ──────────────────────────────────────────────
# Page config
# ──────────────────────────────────────────────

st.set_page_config(
    page_title="CATE Targeting Engine",
    layout="wide",
)

# ──────────────────────────────────────────────
# Cached helpers
# ──────────────────────────────────────────────


@st.cache_data(show_spinner="Generating example experiment…")
def _load_example_data() -> pd.DataFrame:
    """Generate a randomized experiment with a known linear effect."""
    frame, _ = generate_synthetic_experiment()
    return frame


@st.cache_resource(show_spinner="Fitting models…")
def _run(_units: UnitTable, data_key: str, config: EngineConfig) -> EvaluationReport:
    """Run the split validation; *data_key* identifies the cached data."""
    return run_split_validation(_units, config)


# ──────────────────────────────────────────────
# Sidebar — data source
# ──────────────────────────────────────────────

st.sidebar.title("CATE Targeting")

data_source = st.sidebar.radio("Data Source", ["Example Data", "Upload CSV"])

units: UnitTable | None = None
data_key = data_source

if data_source == "Example Data":
    units = load_units(_load_example_data())

else:
    uploaded_file = st.sidebar.file_uploader("Upload your CSV", type=["csv"])

    if uploaded_file is None:
        st.warning("Please upload a CSV file to continue.")
        st.stop()

    raw_df = pd.read_csv(uploaded_file)

    if raw_df.empty:
        st.error("The uploaded CSV is empty.")
        st.stop()

    st.info(f"Loaded **{len(raw_df):,}** rows, **{len(raw_df.columns)}** columns.")
    all_cols = list(raw_df.columns)

    with st.sidebar.expander("Column Mapping", expanded=True):
        id_col = st.selectbox("Unit Id Column", all_cols)
        treat_col = st.selectbox(
            "Treatment Column (binary 0/1)",
            [c for c in all_cols if c != id_col],
        )
        outcome_col = st.selectbox(
            "Outcome Column",
            [c for c in all_cols if c not in {id_col, treat_col}],
        )
        remaining = [
            c for c in all_cols if c not in {id_col, treat_col, outcome_col, PROPENSITY_COL}
        ]
        feat_cols = st.multiselect("Covariate Columns", remaining, default=remaining)
        propensity = st.number_input(
            "Design propensity (0 = use the propensity column or treated share)",
            min_value=0.0, max_value=1.0, value=0.0, step=0.05,
        )

    try:
        units = load_units(
            raw_df,
            id_col=id_col,
            treatment_col=treat_col,
            outcome_col=outcome_col,
            covariates=feat_cols,
            propensity=propensity or None,
        )
        data_key = ":".join(
            [uploaded_file.name, id_col, treat_col, outcome_col, *feat_cols, str(propensity)]
        )
    except ValueError as exc:
        st.error(f"Error processing data: {exc}")
        st.stop()

# ──────────────────────────────────────────────
# Sidebar — engine options
# ──────────────────────────────────────────────

with st.sidebar.expander("Engine Options", expanded=True):
    seed = st.number_input("Seed", value=42, step=1)
    split_probability = st.slider("Training share", 0.1, 0.9, 0.5, 0.05)
    num_groups = st.number_input("Lift groups", min_value=2, max_value=50, value=20)
    margin = st.number_input("Margin per unit of outcome", value=0.3, step=0.05)
    cost = st.number_input("Cost per targeted unit", value=0.5, step=0.1)
    estimators = st.multiselect("Estimators", list(KNOWN_ESTIMATORS), default=["ols", "lasso"])
    penalty_rule = st.radio("Lasso penalty", ["min", "1se"], horizontal=True)

if not estimators:
    st.warning("Select at least one estimator.")
    st.stop()

config = EngineConfig(
    seed=int(seed),
    split_probability=float(split_probability),
    num_lift_groups=int(num_groups),
    margin=float(margin),
    cost=float(cost),
    estimators=tuple(estimators),
    penalty_rule=penalty_rule,
)

try:
    report = _run(units, data_key, config)
except CATEPolicyError as exc:
    st.error(f"Run failed: {exc}")
    st.stop()

# ──────────────────────────────────────────────
# Main tabs
# ──────────────────────────────────────────────

tab_lift, tab_policy, tab_curve = st.tabs(
    ["Lift Tables", "Policy Comparison", "Top-Percent Profit"]
)

with tab_lift:
    cohort = report.cohort
    col1, col2 = st.columns(2)
    col1.metric("Training units", f"{len(cohort.training):,}")
    col2.metric("Validation units", f"{len(cohort.validation):,}")

    for name, table in report.lift_tables.items():
        st.subheader(f"Lift table: {name}")
        st.dataframe(table, use_container_width=True)

with tab_policy:
    st.header("Threshold policies (IPW profit)")
    st.caption(f"Profit per {config.profit_scale:,.0f} units; target when margin × tau > cost.")
    st.dataframe(report.policy_table, use_container_width=True)

with tab_curve:
    st.header("Top-percent policies (matched-mean profit)")
    st.dataframe(report.top_percent_table, use_container_width=True)

    name = st.selectbox("Model", list(report.profit_curves))
    curve = report.profit_curves[name]
    m1, m2 = st.columns(2)
    m1.metric("Best share targeted", f"{curve.best_top_percent:.0%}")
    m2.metric("Best profit", f"{curve.best_profit:,.2f}")

    with st.expander("Show full curve"):
        st.dataframe(curve.points, use_container_width=True)
