import json

import pandas as pd
import streamlit as st

from data_alchemist.backend import DataManager
from data_alchemist.exceptions import CUSTOM_ERRORS
from data_alchemist.loader import map_headers
from data_alchemist.rules import RULE_TYPES

st.set_page_config(page_title="Data Alchemist Dashboard", layout="wide")
st.title("🧪 Data Alchemist - Allocation Data & Rules")

# Instantiate DataManager (singleton in session state)
if "dm" not in st.session_state:
    st.session_state.dm = DataManager()

dm: DataManager = st.session_state.dm
HANDLED_ERRORS = tuple(CUSTOM_ERRORS)


def upload_table(label: str, entity_type: str):
    uploaded_file = st.file_uploader(f"Upload {label} file", type=["csv", "xlsx"], key=label)
    if uploaded_file is None:
        return None
    if uploaded_file.name.lower().endswith(".xlsx"):
        df = pd.read_excel(uploaded_file)
    else:
        df = pd.read_csv(uploaded_file)
    df = df.rename(columns=map_headers(list(df.columns), entity_type))
    st.success(f"{label} uploaded with {len(df)} rows")
    return df


with st.sidebar:
    st.header("1. Upload Data Files")
    clients_df = upload_table("Clients", "clients")
    workers_df = upload_table("Workers", "workers")
    tasks_df = upload_table("Tasks", "tasks")

    if st.button("Load Uploaded Files"):
        if clients_df is not None and workers_df is not None and tasks_df is not None:
            dm.load_records(
                clients_df.to_dict(orient="records"),
                workers_df.to_dict(orient="records"),
                tasks_df.to_dict(orient="records"),
            )
            st.success("All files loaded successfully!")
        else:
            st.error("Please upload all three files before loading.")

    st.markdown("---")
    st.header("2. Set Priority Weights")
    priority_levels = st.slider("PriorityLevel weight", 0.0, 1.0, 0.3)
    requested_tasks = st.slider("RequestedTaskIDs weight", 0.0, 1.0, 0.2)
    fairness = st.slider("Fairness weight", 0.0, 1.0, 0.3)
    load_limit = st.slider("LoadLimit weight", 0.0, 1.0, 0.2)

    if st.button("Set Priorities"):
        dm.set_priorities({
            "PriorityLevel": priority_levels,
            "RequestedTaskIDs": requested_tasks,
            "Fairness": fairness,
            "LoadLimit": load_limit
        })
        st.success(f"Priorities set: {dm.priorities}")


# --- Main workspace ---
st.header("3. Data Validation")
errors = dm.validate_all()
if not dm.has_data:
    st.info("Upload clients, workers and tasks to start.")
elif not errors:
    st.success("No validation errors found!")
else:
    st.error(f"{len(errors)} entities have validation errors:")
    for entity_id, messages in errors.items():
        cols = st.columns([4, 1])
        cols[0].write(f"**{entity_id}**: " + "; ".join(messages))
        if cols[1].button("Fix", key=f"fix-{entity_id}"):
            try:
                result = dm.fix_validation_error(entity_id, messages[0])
                st.success(result["patch"]["changesMade"])
                st.rerun()
            except HANDLED_ERRORS as e:
                st.error(str(e))

    if st.button("Apply Default Fixes"):
        result = dm.apply_default_fixes()
        st.success(f"Errors reduced from {result['errors_before']} to {result['errors_after']}")

if dm.has_data:
    tab_clients, tab_workers, tab_tasks = st.tabs(["Clients", "Workers", "Tasks"])
    tab_clients.dataframe(pd.DataFrame(dm.clients))
    tab_workers.dataframe(pd.DataFrame(dm.workers))
    tab_tasks.dataframe(pd.DataFrame(dm.tasks))

st.markdown("---")
st.header("4. Natural Language Search & Modify")
nl_query = st.text_input("Search (e.g. 'tasks with duration > 3')")
if st.button("Search"):
    if not nl_query.strip():
        st.warning("Please enter a query")
    else:
        try:
            st.json(dm.natural_language_search(nl_query))
        except HANDLED_ERRORS as e:
            st.error(str(e))

nl_command = st.text_input("Modify (e.g. 'set duration to 2 for T3')")
if st.button("Apply Modification"):
    try:
        result = dm.natural_language_modify(nl_command)
        st.success(result["patch"]["changesMade"] or "Modification applied")
        if result["unmatched_ids"]:
            st.warning(f"Unknown ids ignored: {', '.join(result['unmatched_ids'])}")
    except HANDLED_ERRORS as e:
        st.error(str(e))

st.markdown("---")
st.header("5. Allocation Rules")
tab_builder, tab_nl = st.tabs(["Rule Builder", "Natural Language"])

with tab_builder:
    rule_type = st.selectbox("Rule type", RULE_TYPES)
    parameters_text = st.text_area("Parameters (JSON)", value="{}")
    if st.button("Add Rule"):
        try:
            parameters = json.loads(parameters_text)
        except ValueError as e:
            st.error(f"Parameters are not valid JSON: {e}")
        else:
            rule = dm.add_rule({"type": rule_type, "parameters": parameters})
            if rule["valid"]:
                st.success("Rule added")
            else:
                st.warning(f"Rule added but invalid: {rule['validationMessage']}")

with tab_nl:
    rule_text = st.text_area("Describe your rule:", placeholder="e.g., Finish T5 before starting T4")
    if st.button("Convert and Add Rule"):
        try:
            rule = dm.add_rule_from_nl(rule_text)
            st.json(rule)
        except HANDLED_ERRORS as e:
            st.error(str(e))

report = dm.rule_report()
st.write(
    f"Valid: {report.summary['valid']} | Invalid: {report.summary['invalid']} | "
    f"Warnings: {report.summary['warnings']}"
)
if not report.circular.valid:
    st.error(report.circular.validation_message)

for i, rule in enumerate(report.to_dict()["rules"]):
    cols = st.columns([5, 1])
    status = "✅" if rule["valid"] and not rule.get("validationMessage") else ("⚠️" if rule["valid"] else "❌")
    cols[0].write(f"{status} **{rule['type']}** `{json.dumps(rule['parameters'])}` {rule.get('validationMessage', '')}")
    if cols[1].button("Delete", key=f"delete-rule-{i}"):
        dm.delete_rule(i)
        st.rerun()

st.markdown("---")
st.header("6. Export Data & Rules")

if st.button("Export All to CSV/JSON", disabled=not report.exportable or bool(errors)):
    try:
        outdir = dm.export_all()
        st.success(f"Exported data and rules to folder: {outdir}")
    except HANDLED_ERRORS as e:
        st.error(str(e))
