import math
import re
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd

from data_alchemist.entities import REQUIRED_COLUMNS
from data_alchemist.exceptions import FileReadingError
from data_alchemist.logger import get_logger

logger = get_logger(__name__)

# Header fragments people use instead of the canonical column names
COMMON_VARIATIONS = {
    "ID": ["id", "identifier", "code", "number", "no", "#"],
    "Name": ["name", "title", "label"],
    "PriorityLevel": ["priority", "importance", "urgency", "rank"],
    "RequestedTaskIDs": ["requested", "requestedtasks", "tasksrequested"],
    "AttributesJSON": ["attributes", "attrs", "metadata", "json"],
    "Skills": ["skill", "capability", "competency", "expertise"],
    "RequiredSkills": ["requiredskill", "skillsrequired", "needs"],
    "Duration": ["time", "length", "period", "span"],
    "MaxConcurrent": ["concurrent", "parallel", "simultaneous"],
    "AvailableSlots": ["slots", "capacity", "availability"],
    "MaxLoadPerPhase": ["maxload", "loadlimit", "load"],
    "PreferredPhases": ["phases", "preferredphase"],
    "QualificationLevel": ["qual", "certification", "grade"],
    "GroupTag": ["group", "team", "department", "tag"],
    "WorkerGroup": ["group", "team", "department"],
    "Category": ["category", "type", "kind"],
}


def _normalise(header: str) -> str:
    return re.sub(r"[_\s\-]", "", str(header)).lower()


def _variations_for(standard: str, entity_type: str) -> List[str]:
    # ClientID -> ID, WorkerName -> Name
    stem = re.sub(r"^(Client|Worker|Task)(?=ID$|Name$)", "", standard)
    variations = COMMON_VARIATIONS.get(stem, [])
    if stem in ("ID", "Name"):
        # "client id", "task_name": the entity word plus the stem
        prefix = entity_type[:-1]
        return [prefix + v for v in variations]
    return variations


def map_headers(headers: List[str], entity_type: str) -> Dict[str, str]:
    """
    Map uploaded column headers onto the canonical names for ``entity_type``.

    Three passes, each only over headers the previous passes left unmapped:
    exact match ignoring case and separators, known variations, then a loose
    word-overlap score above 0.5.
    """
    standard_headers = REQUIRED_COLUMNS[entity_type]
    mapping: Dict[str, str] = {}
    taken = set()

    # First pass: exact matches
    for header in headers:
        for standard in standard_headers:
            if standard not in taken and _normalise(header) == _normalise(standard):
                mapping[header] = standard
                taken.add(standard)
                break

    # Second pass: common variations
    for header in headers:
        if header in mapping:
            continue
        normalised = _normalise(header)
        for standard in standard_headers:
            if standard in taken:
                continue
            if any(v and v in normalised for v in _variations_for(standard, entity_type)):
                mapping[header] = standard
                taken.add(standard)
                break

    # Third pass: fuzzy word overlap
    for header in headers:
        if header in mapping:
            continue
        words = [w for w in re.split(r"[_\s\-]+", str(header).lower()) if w]
        if not words:
            continue
        for standard in standard_headers:
            if standard in taken:
                continue
            standard_words = [w.lower() for w in re.findall(r"[A-Z][a-z]*|[a-z]+", standard)]
            score = sum(
                1 for w in words if any(sw in w or w in sw for sw in standard_words)
            ) / len(words)
            if score > 0.5:
                mapping[header] = standard
                taken.add(standard)
                break

    return mapping


def clean_records(data: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Clean data to ensure JSON serialization compatibility"""
    cleaned_data = []
    for row in data:
        cleaned_row = {}
        for key, value in row.items():
            if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
                cleaned_row[key] = None
            elif value is not None and not isinstance(value, (list, dict)) and pd.isna(value):
                cleaned_row[key] = None
            else:
                cleaned_row[key] = value
        cleaned_data.append(cleaned_row)
    return cleaned_data


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    path = Path(path)
    try:
        if path.suffix.lower() in (".xlsx", ".xls"):
            return pd.read_excel(path)
        return pd.read_csv(path)
    except (OSError, ValueError) as e:
        raise FileReadingError(f"Could not read {path.name}: {e}") from e


def load_records(path: Union[str, Path], entity_type: str) -> List[Dict[str, Any]]:
    """Read one CSV/XLSX file into cleaned records with canonical headers."""
    df = read_table(path)
    mapping = map_headers(list(df.columns), entity_type)
    renamed = {k: v for k, v in mapping.items() if k != v}
    if renamed:
        logger.info("Mapped %s headers: %s", entity_type, renamed)
        df = df.rename(columns=renamed)
    return clean_records(df.to_dict(orient="records"))
