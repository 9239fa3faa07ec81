import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import faiss
from azure.ai.inference import ChatCompletionsClient
from azure.ai.inference.models import SystemMessage, UserMessage
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError
from sentence_transformers import SentenceTransformer

from data_alchemist import config
from data_alchemist.entities import ENTITY_TYPES, ID_FIELDS, to_id
from data_alchemist.exceptions import (
    EntityNotFoundError,
    ExportBlockedError,
    InterpreterUnavailableError,
    NoDataLoadedError,
    RuleIndexError,
)
from data_alchemist.loader import clean_records, load_records
from data_alchemist.logger import get_logger
from data_alchemist.rules import Rule, RuleSetReport, validate_complete_rule, validate_rule_set
from data_alchemist.sanitizer import (
    FixContext,
    ModificationPatch,
    ModifyContext,
    apply_patch,
    fallback_patch,
    reconcile_external_patch,
)
from data_alchemist.validators import validate_entities

logger = get_logger(__name__)


# --------- Semantic row search ---------
class FAISSSearcher:
    """Embedding search over the loaded rows, used when no interpretation service is configured."""

    def __init__(self, model_name: str = None):
        self.model = SentenceTransformer(model_name or config.EMBEDDING_MODEL)
        self.index = None
        self.entries: List[Dict[str, Any]] = []
        self._texts: List[str] = []

    def _row_to_text(self, row: Dict[str, Any]) -> str:
        # Create a textual representation of a row for embedding
        parts = []
        for key in sorted(row.keys()):
            val = row[key]
            if isinstance(val, dict):
                val = json.dumps(val)
            elif isinstance(val, list):
                val = ", ".join(map(str, val))
            parts.append(f"{key}: {val}")
        return " | ".join(parts)

    def index_rows(self, rows: List[Dict[str, Any]]):
        texts = [self._row_to_text(row) for row in rows]
        if texts == self._texts and self.index is not None:
            return
        self.entries = list(rows)
        self._texts = texts
        embeddings = np.array(self.model.encode(texts)).astype("float32")
        self.index = faiss.IndexFlatL2(embeddings.shape[1])
        self.index.add(embeddings)
        logger.debug("Indexed %d rows for semantic search", len(rows))

    def search(self, rows: List[Dict[str, Any]], query: str, top_k=10) -> List[Dict[str, Any]]:
        if not rows:
            return []
        self.index_rows(rows)
        query_vec = np.array(self.model.encode([query])).astype("float32")
        _, indices = self.index.search(query_vec, min(top_k, len(self.entries)))
        return [self.entries[i] for i in indices[0] if i >= 0]


# --------- GPTAgent Wrapper ---------
class GPTAgent:
    def __init__(self):
        github_token = config.GITHUB_TOKEN
        if not github_token:
            raise InterpreterUnavailableError("Missing GITHUB_TOKEN env variable")

        self.client = ChatCompletionsClient(
            endpoint=config.GITHUB_AI_ENDPOINT,
            credential=AzureKeyCredential(github_token)
        )
        self.model_name = config.GITHUB_AI_MODEL

    def chat_completion(self, system_prompt: str, user_prompt: str) -> str:
        messages = [
            SystemMessage(content=system_prompt),
            UserMessage(content=user_prompt)
        ]

        response = self.client.complete(
            messages=messages,
            model=self.model_name,
            temperature=0.2,
            top_p=1.0,
            max_tokens=1000
        )

        return response.choices[0].message.content


# --------- Core Functionalities ---------

def _categorize(records: List[Any]) -> Dict[str, List[Dict[str, Any]]]:
    categorized = {"clients": [], "workers": [], "tasks": []}
    for item in records:
        if not isinstance(item, dict):
            continue
        if "ClientID" in item:
            categorized["clients"].append(item)
        elif "WorkerID" in item:
            categorized["workers"].append(item)
        elif "TaskID" in item:
            categorized["tasks"].append(item)
    return categorized


def natural_language_search(gpt_agent: GPTAgent, data: List[Dict[str, Any]], query: str) -> Dict[str, Any]:
    if not data:
        return {"clients": [], "workers": [], "tasks": []}

    data_sample = data[:20]
    data_types = [t for t in ENTITY_TYPES if any(ID_FIELDS[t] in item for item in data_sample)]

    prompt = f"""
You are a data search assistant. Analyze the user's query and return relevant data from the dataset.

Available data types: {', '.join(data_types)}
Total records available: {len(data)}

Data:
{json.dumps(data, indent=2, default=str)}

User Query: "{query}"

Instructions:
1. Understand what the user is asking for (e.g., "top 5 clients", "workers with Python skills", "tasks with duration > 2")
2. If they ask for "top N" or "first N", return exactly N records
3. If they ask for filtering, filter and return matching records
4. If no specific number is mentioned, return up to 10 relevant records
5. Return ONLY a valid JSON array of the actual data records, no explanations or code blocks
6. If no matches found, return an empty array []
"""

    result_str = gpt_agent.chat_completion(
        system_prompt="You are a data search AI. Return only valid JSON arrays of data records.",
        user_prompt=prompt
    )
    logger.debug("Search response (first 200 chars): %r", result_str[:200])

    start = result_str.find("[")
    end = result_str.rfind("]")
    if start == -1 or end < start:
        logger.warning("Search response contained no JSON array")
        return {"clients": [], "workers": [], "tasks": []}

    try:
        raw_results = json.loads(result_str[start:end + 1])
    except (ValueError, RecursionError) as e:
        logger.warning("JSON parsing error in search response: %s", e)
        return {"clients": [], "workers": [], "tasks": []}

    return _categorize(raw_results if isinstance(raw_results, list) else [])


_PATCH_FORMAT = """{
  "updatedData": [
    {"TaskID": "T001", "Duration": 3}
  ],
  "entityType": "clients|workers|tasks",
  "changesMade": "brief description"
}"""


def natural_language_modify(gpt_agent: GPTAgent, data: Dict[str, List[Dict[str, Any]]], command: str) -> ModificationPatch:
    prompt = f"""
You are a data editor. Strictly follow these rules:
1. Instruction: "{command}"
2. Current Data: {json.dumps(data, indent=2, default=str)}
3. Return ONLY this JSON structure:
{_PATCH_FORMAT}
4. Rules:
   - Never include unchanged fields
   - Always include the ID field (ClientID/WorkerID/TaskID)
   - Only return the minimal set of fields that need changing
   - Maintain original data types
"""
    result_str = gpt_agent.chat_completion(
        system_prompt="You suggest modifications to the data based on commands. Return only JSON.",
        user_prompt=prompt
    )
    return reconcile_external_patch(result_str, ModifyContext(command))


def fix_validation_error(
    gpt_agent: Optional[GPTAgent],
    data: Dict[str, List[Dict[str, Any]]],
    entity: Dict[str, Any],
    context: FixContext,
) -> ModificationPatch:
    """Ask the interpreter for a minimal fix; any failure falls back to the default fix."""
    if gpt_agent is None:
        return fallback_patch(context)

    entity_type = context.resolved_entity_type()
    prompt = f"""
You are an AI assistant for a resource allocation system. You need to fix a validation error:

Error: "{context.error}"
Entity ID: {context.entity_id}
Entity Type: {entity_type}
Entity Data: {json.dumps(entity, indent=2, default=str)}

Full Data Context:
- Clients: {json.dumps(data.get("clients", [])[:2], default=str)}
- Workers: {json.dumps(data.get("workers", [])[:2], default=str)}
- Tasks: {json.dumps(data.get("tasks", [])[:2], default=str)}

Return ONLY a JSON object in this format:
{_PATCH_FORMAT}

Rules:
- Always include the ID field and never include unchanged fields
- Maintain original data types
- Fix the specific error mentioned
"""
    try:
        result_str = gpt_agent.chat_completion(
            system_prompt="You fix validation errors in allocation data. Return only JSON.",
            user_prompt=prompt
        )
    except AzureError as e:
        logger.warning("Interpretation service failed while fixing %s: %s", context.entity_id, e)
        result_str = None
    return reconcile_external_patch(result_str, context)


def nl_to_rule(
    gpt_agent: GPTAgent,
    user_rule_request: str,
    clients: List[Dict[str, Any]],
    workers: List[Dict[str, Any]],
    tasks: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Converts a natural language rule description into an unvalidated rule dict
    (``type``, ``parameters``, ``businessLogic``) using the interpretation service.
    """
    prompt = f'''
Convert this natural language rule to structured JSON:
"""{user_rule_request.strip()}"""

Available entities:
- Tasks: {json.dumps([{"TaskID": t.get("TaskID"), "TaskName": t.get("TaskName")} for t in tasks[:10]], default=str)}
- Workers: {json.dumps([{"WorkerID": w.get("WorkerID"), "WorkerName": w.get("WorkerName")} for w in workers[:10]], default=str)}
- Clients: {json.dumps([{"ClientID": c.get("ClientID"), "ClientName": c.get("ClientName")} for c in clients[:10]], default=str)}

Supported rule types and their parameters:
- coRun: {{"tasks": ["T1", "T2"]}}
- precedence: {{"cause": "T1", "effect": "T2"}}
- loadLimit: {{"workerId": "W1", "maxTasks": 2}}
- phaseWindow: {{"taskId": "T1", "phases": [1, 2]}}
- slotRestriction: {{"workerId": "W1", "minSlots": 2}}
- patternMatch: {{"pattern": "^T1"}}
- skillRequirement: {{"taskId": "T1", "skills": ["python"]}}
- timeWindow: {{"taskId": "T1", "start": 1, "end": 3}}
- resourceAllocation: {{"workerId": "W1", "taskIds": ["T1"]}}

Return JSON with:
- type: one of the supported types
- parameters: object with the fields above, using entity IDs
- businessLogic: one-sentence explanation

Return only the JSON object, no explanations and no code blocks.
'''
    result_str = gpt_agent.chat_completion(
        system_prompt="You are an expert AI rules converter that transforms natural language allocation rules into structured JSON rule objects.",
        user_prompt=prompt
    )
    logger.debug("Rule response: %r", result_str)

    start = result_str.find("{") if result_str else -1
    end = result_str.rfind("}") if result_str else -1
    try:
        if start == -1 or end < start:
            raise ValueError("no JSON object in response")
        rule = json.loads(result_str[start:end + 1])
        if not isinstance(rule, dict):
            raise ValueError("rule is not a JSON object")
    except (ValueError, RecursionError) as e:
        logger.warning("Failed to parse rule JSON: %s", e)
        return {
            "type": "invalid",
            "parameters": {},
            "validationMessage": "Failed to parse rule",
            "businessLogic": "Please rephrase your rule",
        }

    # the interpreter's own verdict is dropped; rules are stamped by the validator
    rule = Rule.from_dict(rule)
    rule.valid, rule.validation_message = False, None
    rule.extra.setdefault("createdAt", datetime.now(timezone.utc).isoformat())
    return rule.to_dict()


class DataManager:
    """
    Per-process owner of the loaded datasets, rules and priority weights.

    The validators are pure; this object re-runs them after every change and is
    the only place patches are merged into the records.
    """

    def __init__(self, gpt_agent: Optional[GPTAgent] = None, searcher: Optional[FAISSSearcher] = None):
        if gpt_agent is None:
            try:
                gpt_agent = GPTAgent()
            except InterpreterUnavailableError as e:
                logger.warning("AI features disabled: %s", e)
        self.gpt_agent = gpt_agent
        self.searcher = searcher

        self.clients: List[Dict[str, Any]] = []
        self.workers: List[Dict[str, Any]] = []
        self.tasks: List[Dict[str, Any]] = []
        self.rules: List[Dict[str, Any]] = []
        self.priorities: Dict[str, float] = {}

    # --------- Loading ---------

    def load_files(self, clients_path, workers_path, tasks_path):
        self.load_records(
            load_records(clients_path, "clients"),
            load_records(workers_path, "workers"),
            load_records(tasks_path, "tasks"),
        )

    def load_records(self, clients, workers, tasks):
        self.clients = clean_records(clients)
        self.workers = clean_records(workers)
        self.tasks = clean_records(tasks)
        self.rules = self._restamp(self.rules)
        logger.info(
            "Loaded %d clients, %d workers, %d tasks",
            len(self.clients), len(self.workers), len(self.tasks),
        )

    @property
    def has_data(self) -> bool:
        return bool(self.clients or self.workers or self.tasks)

    def _require_data(self):
        if not self.has_data:
            raise NoDataLoadedError("No data loaded. Please upload files first.")

    def data(self) -> Dict[str, List[Dict[str, Any]]]:
        return {"clients": self.clients, "workers": self.workers, "tasks": self.tasks}

    def _require_ai(self):
        if self.gpt_agent is None:
            raise InterpreterUnavailableError("AI features are disabled: set GITHUB_TOKEN")

    # --------- Validation ---------

    def validate_all(self) -> Dict[str, List[str]]:
        return validate_entities(self.clients, self.workers, self.tasks)

    def rule_report(self) -> RuleSetReport:
        return validate_rule_set(self.rules, self.clients, self.workers, self.tasks)

    def validation_summary(self) -> Dict[str, Any]:
        errors = self.validate_all()
        report = self.rule_report()
        return {
            "errors": errors,
            "error_count": sum(len(messages) for messages in errors.values()),
            "rules": report.to_dict(),
            "summary": {
                "total_clients": len(self.clients),
                "total_workers": len(self.workers),
                "total_tasks": len(self.tasks),
                "total_rules": len(self.rules),
            },
        }

    # --------- Rules ---------

    def _restamp(self, rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [validate_complete_rule(r, self.tasks, self.workers, self.clients) for r in rules]

    def add_rule(self, rule: Dict[str, Any]) -> Dict[str, Any]:
        stamped = validate_complete_rule(rule, self.tasks, self.workers, self.clients)
        self.rules.append(stamped)
        logger.info("Added %s rule (valid=%s)", stamped.get("type"), stamped["valid"])
        return stamped

    def delete_rule(self, index: int) -> Dict[str, Any]:
        if index < 0 or index >= len(self.rules):
            raise RuleIndexError(f"No rule at index {index}")
        return self.rules.pop(index)

    def generate_rule_from_natural_language(self, user_rule_request: str) -> Dict[str, Any]:
        """Generate a validated rule from natural language without adding it to the rules list"""
        self._require_ai()
        rule = nl_to_rule(self.gpt_agent, user_rule_request, self.clients, self.workers, self.tasks)
        return validate_complete_rule(rule, self.tasks, self.workers, self.clients)

    def add_rule_from_nl(self, user_rule_request: str) -> Dict[str, Any]:
        return self.add_rule(self.generate_rule_from_natural_language(user_rule_request))

    # --------- Search ---------

    def natural_language_search(self, query: str) -> Dict[str, Any]:
        self._require_data()
        combined = self.clients + self.workers + self.tasks
        if self.gpt_agent is not None:
            results = natural_language_search(self.gpt_agent, combined, query)
        else:
            if self.searcher is None:
                self.searcher = FAISSSearcher()
            results = _categorize(self.searcher.search(combined, query))
        logger.info(
            "Search %r -> %d clients, %d workers, %d tasks",
            query, len(results["clients"]), len(results["workers"]), len(results["tasks"]),
        )
        return results

    # --------- Modification ---------

    def apply_modification(self, patch: ModificationPatch) -> List[str]:
        """Merge a validated patch into its dataset; returns ids that matched no record."""
        records = getattr(self, patch.entity_type)
        merged, unmatched = apply_patch(records, patch)
        setattr(self, patch.entity_type, merged)
        self.rules = self._restamp(self.rules)
        if unmatched:
            logger.warning("Patch ids not found in %s: %s", patch.entity_type, unmatched)
        return unmatched

    def natural_language_modify(self, command: str) -> Dict[str, Any]:
        self._require_data()
        self._require_ai()
        patch = natural_language_modify(self.gpt_agent, self.data(), command)
        unmatched = self.apply_modification(patch)
        return {"patch": patch.to_dict(), "unmatched_ids": unmatched}

    def find_entity(self, entity_id: str):
        entity_id = to_id(entity_id)
        for entity_type in ENTITY_TYPES:
            id_field = ID_FIELDS[entity_type]
            for record in getattr(self, entity_type):
                if to_id(record.get(id_field)) == entity_id:
                    return entity_type, record
        raise EntityNotFoundError(f"Entity {entity_id} not found")

    def fix_validation_error(self, entity_id: str, error: str) -> Dict[str, Any]:
        entity_type, entity = self.find_entity(entity_id)
        context = FixContext(entity_id=to_id(entity_id), error=error, entity_type=entity_type)
        patch = fix_validation_error(self.gpt_agent, self.data(), entity, context)
        unmatched = self.apply_modification(patch)
        return {"patch": patch.to_dict(), "unmatched_ids": unmatched}

    def apply_default_fixes(self) -> Dict[str, Any]:
        """Apply the deterministic default fix to every error it knows how to repair."""
        errors_before = self.validate_all()
        fixes_applied = []
        for entity_id, messages in errors_before.items():
            try:
                entity_type, _ = self.find_entity(entity_id)
            except EntityNotFoundError:
                continue  # rows without an id
            for message in messages:
                patch = fallback_patch(FixContext(entity_id, message, entity_type))
                if len(patch.updated_data[0]) > 1:
                    self.apply_modification(patch)
                    fixes_applied.append(f"{entity_id}: {patch.changes_made}")

        errors_after = self.validate_all()
        return {
            "fixes_applied": fixes_applied,
            "errors_before": sum(len(m) for m in errors_before.values()),
            "errors_after": sum(len(m) for m in errors_after.values()),
        }

    # --------- Priorities & export ---------

    def set_priorities(self, priorities: Dict[str, float]):
        cleaned = {k: float(v) for k, v in priorities.items() if float(v) >= 0}
        total = sum(cleaned.values())
        if total > 0:
            self.priorities = {k: v / total for k, v in cleaned.items()}
        else:
            self.priorities = cleaned

    def export_all(self, output_dir=None) -> str:
        report = self.rule_report()
        if not report.exportable:
            raise ExportBlockedError(
                f"Export blocked: {report.summary['invalid']} invalid rule(s)"
                + ("" if report.circular.valid else f"; {report.circular.validation_message}")
            )

        output_dir = str(output_dir or config.EXPORT_DIR)
        os.makedirs(output_dir, exist_ok=True)
        pd.DataFrame(self.clients).to_csv(os.path.join(output_dir, "clients.csv"), index=False)
        pd.DataFrame(self.workers).to_csv(os.path.join(output_dir, "workers.csv"), index=False)
        pd.DataFrame(self.tasks).to_csv(os.path.join(output_dir, "tasks.csv"), index=False)
        with open(os.path.join(output_dir, "rules.json"), "w") as f:
            json.dump(report.to_dict()["rules"], f, indent=2, default=str)
        with open(os.path.join(output_dir, "priorities.json"), "w") as f:
            json.dump(self.priorities, f, indent=2)
        logger.info("Exported data and %d rules to %s", len(self.rules), output_dir)
        return output_dir
