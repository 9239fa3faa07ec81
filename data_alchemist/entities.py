"""Client, worker and task records as a closed set of entity types.

Upload and the interpretation service hand us plain dicts (pandas
``to_dict(orient="records")`` rows or JSON objects). Every consumer converts
them here once, so the validators work on typed fields instead of probing keys.
"""
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

ENTITY_TYPES = ("clients", "workers", "tasks")

ID_FIELDS = {
    "clients": "ClientID",
    "workers": "WorkerID",
    "tasks": "TaskID",
}

REQUIRED_COLUMNS = {
    "clients": [
        "ClientID", "ClientName", "PriorityLevel",
        "RequestedTaskIDs", "GroupTag", "AttributesJSON"
    ],
    "workers": [
        "WorkerID", "WorkerName", "Skills",
        "AvailableSlots", "MaxLoadPerPhase",
        "WorkerGroup", "QualificationLevel"
    ],
    "tasks": [
        "TaskID", "TaskName", "Category",
        "Duration", "RequiredSkills",
        "PreferredPhases", "MaxConcurrent"
    ],
}

Number = Union[int, float]


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def to_number(value: Any) -> Optional[Number]:
    """Read a cell as a number; blanks, NaN and text give ``None``."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isinf(value):
            return None
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return to_number(float(text))
        except ValueError:
            return None
    return None


def to_int(value: Any) -> Optional[int]:
    """Like ``to_number`` but fractional values give ``None`` too."""
    number = to_number(value)
    return number if isinstance(number, int) else None


def to_id(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def split_list(value: Any) -> List[str]:
    """Split a comma-separated cell (or a list) into trimmed, non-empty tokens."""
    if is_blank(value):
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return split_list(parsed)
        tokens = text.split(",")
    elif isinstance(value, (list, tuple, set)):
        tokens = [to_id(v) for v in value]
    else:
        tokens = [to_id(value)]
    return [t.strip() for t in tokens if t.strip()]


def _optional(value: Any) -> Any:
    return None if is_blank(value) else value


@dataclass
class Client:
    client_id: str
    name: str = ""
    priority_level: Optional[int] = None
    requested_task_ids: List[str] = field(default_factory=list)
    attributes: Any = None
    group_tag: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    entity_type = "clients"
    id_field = "ClientID"
    _columns = ("ClientID", "ClientName", "PriorityLevel", "RequestedTaskIDs", "AttributesJSON", "GroupTag")

    @property
    def id(self) -> str:
        return self.client_id

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Client":
        return cls(
            client_id=to_id(record.get("ClientID")),
            name=to_id(record.get("ClientName")),
            priority_level=to_int(record.get("PriorityLevel")),
            requested_task_ids=split_list(record.get("RequestedTaskIDs")),
            attributes=_optional(record.get("AttributesJSON")),
            group_tag=_optional(record.get("GroupTag")),
            extra={k: v for k, v in record.items() if k not in cls._columns},
        )


@dataclass
class Worker:
    worker_id: str
    name: str = ""
    skills: List[str] = field(default_factory=list)
    available_slots: Any = None
    max_load_per_phase: Optional[int] = None
    worker_group: Optional[str] = None
    qualification_level: Optional[Number] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    entity_type = "workers"
    id_field = "WorkerID"
    _columns = ("WorkerID", "WorkerName", "Skills", "AvailableSlots",
                "MaxLoadPerPhase", "WorkerGroup", "QualificationLevel")

    @property
    def id(self) -> str:
        return self.worker_id

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Worker":
        return cls(
            worker_id=to_id(record.get("WorkerID")),
            name=to_id(record.get("WorkerName")),
            skills=split_list(record.get("Skills")),
            available_slots=_optional(record.get("AvailableSlots")),
            max_load_per_phase=to_int(record.get("MaxLoadPerPhase")),
            worker_group=_optional(record.get("WorkerGroup")),
            qualification_level=to_number(record.get("QualificationLevel")),
            extra={k: v for k, v in record.items() if k not in cls._columns},
        )


@dataclass
class Task:
    task_id: str
    name: str = ""
    category: Optional[str] = None
    duration: Optional[int] = None
    required_skills: List[str] = field(default_factory=list)
    preferred_phases: Any = None
    max_concurrent: Optional[Number] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    entity_type = "tasks"
    id_field = "TaskID"
    _columns = ("TaskID", "TaskName", "Category", "Duration",
                "RequiredSkills", "PreferredPhases", "MaxConcurrent")

    @property
    def id(self) -> str:
        return self.task_id

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Task":
        return cls(
            task_id=to_id(record.get("TaskID")),
            name=to_id(record.get("TaskName")),
            category=_optional(record.get("Category")),
            duration=to_int(record.get("Duration")),
            required_skills=split_list(record.get("RequiredSkills")),
            preferred_phases=_optional(record.get("PreferredPhases")),
            max_concurrent=to_number(record.get("MaxConcurrent")),
            extra={k: v for k, v in record.items() if k not in cls._columns},
        )


Entity = Union[Client, Worker, Task]

ENTITY_CLASSES = {
    "clients": Client,
    "workers": Worker,
    "tasks": Task,
}


def coerce_entities(items: Iterable[Any], entity_type: str) -> List[Entity]:
    """Convert plain records into entities of ``entity_type``; entities pass through."""
    cls = ENTITY_CLASSES[entity_type]
    entities = []
    for item in items or []:
        if isinstance(item, cls):
            entities.append(item)
        elif isinstance(item, dict):
            entities.append(cls.from_record(item))
        else:
            raise TypeError(f"Expected a {entity_type} record, got {type(item).__name__}")
    return entities


def entity_ids(items: Iterable[Any], entity_type: str) -> List[str]:
    """Ids of ``items``, which may be records, entities or bare id strings."""
    items = list(items or [])
    bare = [to_id(i) for i in items if isinstance(i, str)]
    records = [i for i in items if not isinstance(i, str)]
    return bare + [e.id for e in coerce_entities(records, entity_type) if e.id]
