"""
Allocation rules: schema checks, precedence cycle detection and aggregation.

A rule is ``{"type": ..., "parameters": {...}}`` as produced by the rule
builder or the natural-language interpreter. ``valid``/``validationMessage``
are stamped by this module only. A verdict of ``valid`` with a message is a
warning: the rule is usable but probably not what the author meant.
"""
import copy
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from data_alchemist.entities import entity_ids, is_blank, to_id

RULE_TYPES = (
    "coRun",
    "precedence",
    "loadLimit",
    "phaseWindow",
    "slotRestriction",
    "patternMatch",
    "skillRequirement",
    "timeWindow",
    "resourceAllocation",
)

CIRCULAR_DEPENDENCY_MESSAGE = "Circular dependency detected in task precedence rules"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    validation_message: Optional[str] = None

    @property
    def is_warning(self) -> bool:
        return self.valid and bool(self.validation_message)

    def to_dict(self) -> Dict[str, Any]:
        result = {"valid": self.valid}
        if self.validation_message:
            result["validationMessage"] = self.validation_message
        return result


@dataclass
class Rule:
    type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    valid: bool = False
    validation_message: Optional[str] = None
    business_logic: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # id, name, isActive, createdAt, ...

    _keys = ("type", "parameters", "valid", "validationMessage", "businessLogic")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        parameters = data.get("parameters")
        return cls(
            type=data.get("type") or "",
            parameters=dict(parameters) if isinstance(parameters, dict) else {},
            valid=bool(data.get("valid", False)),
            validation_message=data.get("validationMessage") or None,
            business_logic=data.get("businessLogic") or None,
            extra={k: v for k, v in data.items() if k not in cls._keys},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            **self.extra,
            "type": self.type,
            "parameters": copy.deepcopy(self.parameters),
            "valid": self.valid,
        }
        if self.validation_message:
            data["validationMessage"] = self.validation_message
        if self.business_logic:
            data["businessLogic"] = self.business_logic
        return data


RuleLike = Union[Rule, Dict[str, Any]]


def _rule_fields(rule: RuleLike):
    if isinstance(rule, Rule):
        return rule.type, rule.parameters
    return rule.get("type"), rule.get("parameters")


def _known(value: Any, ids: Set[str]) -> bool:
    try:
        return value in ids
    except TypeError:  # unhashable interpreter output, e.g. a nested object
        return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value


def _invalid(message: str) -> ValidationResult:
    return ValidationResult(False, message)


_VALID = ValidationResult(True)


# --------- Per-kind parameter checks ---------

def _validate_co_run(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    tasks = params.get("tasks")
    if not isinstance(tasks, list):
        return _invalid("Co-run rules require a 'tasks' array")
    if len(tasks) < 2:
        return _invalid("Co-run rules require at least 2 tasks")

    missing = [str(t) for t in tasks if not _known(t, ids.tasks)]
    if missing:
        return _invalid(f"Tasks not found: {', '.join(missing)}")
    return _VALID


def _validate_precedence(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    cause, effect = params.get("cause"), params.get("effect")
    if is_blank(cause) or is_blank(effect):
        return _invalid("Precedence rules require 'cause' and 'effect' parameters")

    errors = []
    if not _known(cause, ids.tasks):
        errors.append(f"Cause task {cause} not found")
    if not _known(effect, ids.tasks):
        errors.append(f"Effect task {effect} not found")
    if cause == effect:
        errors.append("Cause and effect cannot be the same task")

    if errors:
        return _invalid("; ".join(errors))
    return _VALID


def _validate_load_limit(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    worker_id, max_tasks = params.get("workerId"), params.get("maxTasks")
    if is_blank(worker_id) or max_tasks is None:
        return _invalid("Load limit rules require 'workerId' and 'maxTasks' parameters")
    if not _known(worker_id, ids.workers):
        return _invalid(f"Worker {worker_id} not found")
    if not _is_number(max_tasks) or max_tasks < 1:
        return _invalid("maxTasks must be a positive number")
    return _VALID


def _validate_phase_window(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    task_id, phases = params.get("taskId"), params.get("phases")
    if is_blank(task_id) or not isinstance(phases, list):
        return _invalid("Phase window rules require 'taskId' and 'phases' array parameters")
    if not _known(task_id, ids.tasks):
        return _invalid(f"Task {task_id} not found")
    if not phases:
        return _invalid("At least one phase must be specified")
    return _VALID


def _validate_slot_restriction(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    worker_id, min_slots = params.get("workerId"), params.get("minSlots")
    if is_blank(worker_id) or not _is_number(min_slots):
        return _invalid("Slot restriction rules require 'workerId' and 'minSlots' parameters")
    if not _known(worker_id, ids.workers):
        return _invalid(f"Worker {worker_id} not found")
    if min_slots < 0:
        return _invalid("minSlots cannot be negative")
    return _VALID


def _validate_pattern_match(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    pattern = params.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        return _invalid("Pattern match rules require a 'pattern' parameter")
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        return _invalid(f"Invalid regular expression pattern: {e}")

    known = ids.tasks | ids.workers | ids.clients
    if known and not any(compiled.search(i) for i in known):
        return ValidationResult(True, f"Pattern '{pattern}' does not match any known task, worker or client ID")
    return _VALID


def _validate_skill_requirement(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    task_id, skills = params.get("taskId"), params.get("skills")
    if is_blank(task_id) or not isinstance(skills, list):
        return _invalid("Skill requirement rules require 'taskId' and 'skills' array parameters")
    if not _known(task_id, ids.tasks):
        return _invalid(f"Task {task_id} not found")
    if not skills:
        return _invalid("At least one skill must be specified")
    return _VALID


def _validate_time_window(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    task_id, start, end = params.get("taskId"), params.get("start"), params.get("end")
    if is_blank(task_id) or not _is_number(start) or not _is_number(end):
        return _invalid("Time window rules require 'taskId', 'start' and 'end' parameters")
    if not _known(task_id, ids.tasks):
        return _invalid(f"Task {task_id} not found")
    if start > end:
        return _invalid("Time window start must not be after its end")
    return _VALID


def _validate_resource_allocation(params: Dict[str, Any], ids: "_Ids") -> ValidationResult:
    worker_id, task_ids = params.get("workerId"), params.get("taskIds")
    if is_blank(worker_id) or not isinstance(task_ids, list) or not task_ids:
        return _invalid("Resource allocation rules require 'workerId' and a non-empty 'taskIds' array")
    if not _known(worker_id, ids.workers):
        return _invalid(f"Worker {worker_id} not found")

    missing = [str(t) for t in task_ids if not _known(t, ids.tasks)]
    if missing:
        return _invalid(f"Tasks not found: {', '.join(missing)}")
    return _VALID


_VALIDATORS: Dict[str, Callable[[Dict[str, Any], "_Ids"], ValidationResult]] = {
    "coRun": _validate_co_run,
    "precedence": _validate_precedence,
    "loadLimit": _validate_load_limit,
    "phaseWindow": _validate_phase_window,
    "slotRestriction": _validate_slot_restriction,
    "patternMatch": _validate_pattern_match,
    "skillRequirement": _validate_skill_requirement,
    "timeWindow": _validate_time_window,
    "resourceAllocation": _validate_resource_allocation,
}


class _Ids:
    def __init__(self, task_ids: Iterable[str], worker_ids: Iterable[str], client_ids: Optional[Iterable[str]] = None):
        self.tasks: Set[str] = set(task_ids or [])
        self.workers: Set[str] = set(worker_ids or [])
        self.clients: Set[str] = set(client_ids or [])


def validate_rule(
    rule: RuleLike,
    task_ids: Iterable[str],
    worker_ids: Iterable[str],
    client_ids: Optional[Iterable[str]] = None,
) -> ValidationResult:
    """Check one rule's shape and references against the known ids."""
    rule_type, params = _rule_fields(rule)
    if not rule_type or not isinstance(params, dict):
        return _invalid("Invalid rule structure: missing type or parameters")
    if not isinstance(rule_type, str):
        return _invalid(f"Unknown rule type: {rule_type}")

    validator = _VALIDATORS.get(rule_type)
    if validator is None:
        return _invalid(f"Unknown rule type: {rule_type}")
    return validator(params, _Ids(task_ids, worker_ids, client_ids))


# --------- Dependency graph ---------

def build_precedence_graph(task_ids: Sequence[str], rules: Iterable[RuleLike]) -> Dict[str, List[str]]:
    graph: Dict[str, List[str]] = {task_id: [] for task_id in task_ids}
    for rule in rules or []:
        rule_type, params = _rule_fields(rule)
        if rule_type != "precedence" or not isinstance(params, dict):
            continue
        cause, effect = params.get("cause"), params.get("effect")
        if is_blank(cause) or is_blank(effect):
            continue
        cause, effect = to_id(cause), to_id(effect)
        graph.setdefault(cause, []).append(effect)
        graph.setdefault(effect, [])
    return graph


def _has_cycle(graph: Dict[str, List[str]]) -> bool:
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    for start in graph:
        if start in visited:
            continue
        visited.add(start)
        on_stack.add(start)
        stack = [(start, iter(graph[start]))]

        while stack:
            node, children = stack[-1]
            for child in children:
                if child in on_stack:
                    return True
                if child not in visited:
                    visited.add(child)
                    on_stack.add(child)
                    stack.append((child, iter(graph[child])))
                    break
            else:
                stack.pop()
                on_stack.discard(node)
    return False


def detect_circular_dependencies(tasks: Iterable[Any], rules: Iterable[RuleLike]) -> ValidationResult:
    """
    Report whether the precedence rules (cause -> effect) form a cycle.

    ``tasks`` may be task records, Task entities or bare task ids. The traversal
    is an iterative depth-first search keeping the current path in ``on_stack``;
    nodes fully explored are never expanded again, so the cost is O(V+E).
    """
    graph = build_precedence_graph(entity_ids(tasks, "tasks"), rules)
    if _has_cycle(graph):
        return _invalid(CIRCULAR_DEPENDENCY_MESSAGE)
    return _VALID


# --------- Aggregation ---------

def validate_complete_rule(
    rule: RuleLike,
    tasks: Iterable[Any],
    workers: Iterable[Any],
    clients: Optional[Iterable[Any]] = None,
) -> RuleLike:
    """Return a copy of ``rule`` with ``valid``/``validationMessage`` freshly stamped."""
    result = validate_rule(
        rule,
        entity_ids(tasks, "tasks"),
        entity_ids(workers, "workers"),
        entity_ids(clients, "clients") if clients is not None else None,
    )
    return _stamp(rule, result)


def _stamp(rule: RuleLike, result: ValidationResult) -> RuleLike:
    if isinstance(rule, Rule):
        return replace(rule, valid=result.valid, validation_message=result.validation_message)

    stamped = copy.deepcopy(rule)
    stamped["valid"] = result.valid
    if result.validation_message:
        stamped["validationMessage"] = result.validation_message
    else:
        stamped.pop("validationMessage", None)
    return stamped


def revalidate_rules(
    rules: Iterable[RuleLike],
    tasks: Iterable[Any],
    workers: Iterable[Any],
    clients: Optional[Iterable[Any]] = None,
) -> List[RuleLike]:
    task_ids = entity_ids(tasks, "tasks")
    worker_ids = entity_ids(workers, "workers")
    client_ids = entity_ids(clients, "clients") if clients is not None else None
    return [_stamp(rule, validate_rule(rule, task_ids, worker_ids, client_ids)) for rule in rules or []]


def _tally(results: Iterable[ValidationResult]) -> Dict[str, int]:
    counts = {"valid": 0, "invalid": 0, "warnings": 0}
    for result in results:
        if not result.valid:
            counts["invalid"] += 1
        elif result.validation_message:
            counts["warnings"] += 1
        else:
            counts["valid"] += 1
    return counts


def validate_all_rules(rules: Iterable[RuleLike], tasks: Iterable[Any], workers: Iterable[Any]) -> Dict[str, int]:
    """Count rules that are valid, invalid, or valid with a warning."""
    task_ids = entity_ids(tasks, "tasks")
    worker_ids = entity_ids(workers, "workers")
    return _tally(validate_rule(rule, task_ids, worker_ids) for rule in rules or [])


@dataclass
class RuleSetReport:
    summary: Dict[str, int]
    rules: List[RuleLike]
    circular: ValidationResult

    @property
    def exportable(self) -> bool:
        return self.summary["invalid"] == 0 and self.circular.valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": dict(self.summary),
            "rules": [r.to_dict() if isinstance(r, Rule) else r for r in self.rules],
            "circularDependency": self.circular.to_dict(),
            "exportable": self.exportable,
        }


def validate_rule_set(
    rules: Iterable[RuleLike],
    clients: Iterable[Any],
    workers: Iterable[Any],
    tasks: Iterable[Any],
) -> RuleSetReport:
    """Full rule pass: stamped rules, counts and the precedence cycle verdict."""
    rules = list(rules or [])
    stamped = revalidate_rules(rules, tasks, workers, clients)
    task_ids = entity_ids(tasks, "tasks")
    worker_ids = entity_ids(workers, "workers")
    client_ids = entity_ids(clients, "clients")
    summary = _tally(validate_rule(rule, task_ids, worker_ids, client_ids) for rule in rules)
    return RuleSetReport(summary, stamped, detect_circular_dependencies(task_ids, rules))
