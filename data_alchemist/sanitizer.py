"""
Sanitizing the interpretation service's output before it may touch the data.

The model is asked for a JSON modification patch but regularly wraps it in
Markdown fences or chatter. ``reconcile_external_patch`` strips that, parses
the outermost ``{...}`` span and checks it against the patch schema. Nothing
more clever is attempted: anything else is a parse error.

In fix mode (repairing one named validation error on one entity) a failed
payload is replaced by a hard-coded fallback. The fallback only knows the
three numeric invariants below and is not meant to grow into a repair engine;
for any other error it returns the bare id, i.e. "could not auto-repair".
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from data_alchemist.entities import ENTITY_TYPES, ID_FIELDS, is_blank, to_id
from data_alchemist.exceptions import ExternalPayloadError
from data_alchemist.logger import get_logger

logger = get_logger(__name__)

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

# (error substring, field, corrective value); first match wins
FALLBACK_FIXES = (
    ("PriorityLevel", "PriorityLevel", 3),
    ("Duration", "Duration", 1),
    ("MaxLoadPerPhase", "MaxLoadPerPhase", 1),
)


@dataclass
class ModificationPatch:
    updated_data: List[Dict[str, Any]]
    entity_type: str
    changes_made: str = ""

    @property
    def id_field(self) -> str:
        return ID_FIELDS[self.entity_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updatedData": [dict(item) for item in self.updated_data],
            "entityType": self.entity_type,
            "changesMade": self.changes_made,
        }


@dataclass(frozen=True)
class ModifyContext:
    """Free-form modification ("set duration to 3 for marketing tasks"); no fallback."""

    command: str = ""


@dataclass(frozen=True)
class FixContext:
    """Repair of one validation ``error`` reported for ``entity_id``."""

    entity_id: str
    error: str
    entity_type: Optional[str] = field(default=None)

    def resolved_entity_type(self) -> str:
        if self.entity_type:
            return self.entity_type
        return infer_entity_type(self.entity_id)


PatchContext = Union[ModifyContext, FixContext]


def infer_entity_type(entity_id: str) -> str:
    """Guess the dataset from the id prefix: ``W...`` workers, ``T...`` tasks, else clients."""
    entity_id = to_id(entity_id)
    if entity_id.startswith("W"):
        return "workers"
    if entity_id.startswith("T"):
        return "tasks"
    return "clients"


def extract_json_payload(raw_text: Optional[str]) -> str:
    """Drop code fences and keep only the outermost ``{...}`` span."""
    if not isinstance(raw_text, str):
        raise ExternalPayloadError("Interpretation service returned no text")

    text = _FENCE.sub("", raw_text)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise ExternalPayloadError("No JSON object found in interpretation service output")
    return text[start:end + 1]


def parse_patch(raw_text: Optional[str]) -> ModificationPatch:
    payload = extract_json_payload(raw_text)
    try:
        parsed = json.loads(payload)
    except (ValueError, RecursionError) as e:
        raise ExternalPayloadError(f"Invalid JSON from interpretation service: {e}") from e

    if not isinstance(parsed, dict):
        raise ExternalPayloadError("Expected a JSON object")

    updated_data = parsed.get("updatedData")
    if not isinstance(updated_data, list):
        raise ExternalPayloadError("Missing or invalid updatedData array")

    entity_type = parsed.get("entityType")
    if entity_type not in ENTITY_TYPES:
        raise ExternalPayloadError("Invalid entityType")

    id_field = ID_FIELDS[entity_type]
    for item in updated_data:
        if not isinstance(item, dict) or is_blank(item.get(id_field)):
            raise ExternalPayloadError(f"Missing {id_field} in updated item")

    changes_made = parsed.get("changesMade")
    return ModificationPatch(
        updated_data=updated_data,
        entity_type=entity_type,
        changes_made=changes_made if isinstance(changes_made, str) else "",
    )


def fallback_patch(context: FixContext) -> ModificationPatch:
    entity_type = context.resolved_entity_type()
    fix: Dict[str, Any] = {ID_FIELDS[entity_type]: context.entity_id}
    for needle, field_name, value in FALLBACK_FIXES:
        if needle in str(context.error):
            fix[field_name] = value
            break

    return ModificationPatch(
        updated_data=[fix],
        entity_type=entity_type,
        changes_made=f"Applied default fix for {context.error}",
    )


def reconcile_external_patch(raw_text: Optional[str], context: Optional[PatchContext] = None) -> ModificationPatch:
    """
    Turn interpretation-service text into a validated ``ModificationPatch``.

    Raises ``ExternalPayloadError`` when the text is not a valid patch, unless
    ``context`` is a ``FixContext``, in which case the deterministic fallback
    patch is returned instead.
    """
    try:
        return parse_patch(raw_text)
    except ExternalPayloadError as e:
        if not isinstance(context, FixContext):
            raise
        logger.warning("Fix payload for %s rejected (%s); using fallback", context.entity_id, e)
        return fallback_patch(context)


def apply_patch(
    records: List[Dict[str, Any]],
    patch: ModificationPatch,
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Merge the patch's partial records into ``records`` by id.

    Returns the merged copy and the patch ids that matched no record. The
    input list and its records are left untouched.
    """
    id_field = patch.id_field
    merged = [dict(record) for record in records]
    positions = {to_id(record.get(id_field)): i for i, record in enumerate(merged)}

    unmatched = []
    for partial in patch.updated_data:
        entity_id = to_id(partial.get(id_field))
        position = positions.get(entity_id)
        if position is None:
            unmatched.append(entity_id)
            continue
        merged[position].update({k: v for k, v in partial.items() if k != id_field})
    return merged, unmatched
