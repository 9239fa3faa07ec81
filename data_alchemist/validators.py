from typing import Any, Dict, List, Sequence, Set

from data_alchemist.entities import Client, Entity, Task, Worker, coerce_entities


class _Universe:
    """Identifier and skill sets the per-record checks resolve references against."""

    def __init__(self, workers: List[Worker], tasks: List[Task]):
        self.task_ids: Set[str] = {t.task_id for t in tasks if t.task_id}
        self.worker_skills: Set[str] = set()
        for worker in workers:
            self.worker_skills.update(worker.skills)


def _check_client(client: Client, universe: _Universe) -> List[str]:
    errors = []
    if not client.client_id:
        errors.append("ClientID is required")
    level = client.priority_level
    if level is None or level < 1 or level > 5:
        errors.append("PriorityLevel must be between 1-5")
    for task_id in client.requested_task_ids:
        if task_id not in universe.task_ids:
            errors.append(f"RequestedTaskID {task_id} not found")
    return errors


def _check_worker(worker: Worker, universe: _Universe) -> List[str]:
    errors = []
    if not worker.worker_id:
        errors.append("WorkerID is required")
    load = worker.max_load_per_phase
    if load is None or load < 1:
        errors.append("MaxLoadPerPhase must be at least 1")
    return errors


def _check_task(task: Task, universe: _Universe) -> List[str]:
    errors = []
    if not task.task_id:
        errors.append("TaskID is required")
    if task.duration is None or task.duration < 1:
        errors.append("Duration must be at least 1")
    for skill in task.required_skills:
        if skill not in universe.worker_skills:
            errors.append(f"No worker has required skill: {skill}")
    return errors


def check_entity(entity: Entity, universe: _Universe) -> List[str]:
    if isinstance(entity, Client):
        return _check_client(entity, universe)
    if isinstance(entity, Worker):
        return _check_worker(entity, universe)
    if isinstance(entity, Task):
        return _check_task(entity, universe)
    raise TypeError(f"Not an entity: {type(entity).__name__}")


def _validate_dataset(
    entities: Sequence[Entity],
    universe: _Universe,
    errors: Dict[str, List[str]],
) -> None:
    seen = set()
    for index, entity in enumerate(entities):
        record_errors = check_entity(entity, universe)
        key = entity.id or f"{entity.entity_type}#{index}"

        if entity.id in seen:
            # duplicates share a key; the duplicate notice leads that key's list
            shared = errors.setdefault(key, [])
            shared.insert(0, f"Duplicate {entity.id_field}: {entity.id}")
            shared.extend(record_errors)
            continue
        if entity.id:
            seen.add(entity.id)

        if record_errors:
            errors.setdefault(key, []).extend(record_errors)


def validate_entities(
    clients: Sequence[Any],
    workers: Sequence[Any],
    tasks: Sequence[Any],
) -> Dict[str, List[str]]:
    """
    Check every client, worker and task record against its own field
    invariants and against the other two datasets.

    Returns a sparse mapping from entity id to its violation messages, in check
    order: identifier, numeric ranges, then cross-references. Records without
    an id are keyed ``<kind>#<row index>``. Inputs may be plain records or
    entity objects; nothing is mutated.
    """
    client_entities = coerce_entities(clients, "clients")
    worker_entities = coerce_entities(workers, "workers")
    task_entities = coerce_entities(tasks, "tasks")

    universe = _Universe(worker_entities, task_entities)
    errors: Dict[str, List[str]] = {}
    _validate_dataset(client_entities, universe, errors)
    _validate_dataset(worker_entities, universe, errors)
    _validate_dataset(task_entities, universe, errors)
    return errors
