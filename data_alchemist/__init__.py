"""Validation and rule-consistency engine for the Data Alchemist allocation datasets."""
from data_alchemist.entities import Client, Task, Worker
from data_alchemist.rules import (
    Rule,
    ValidationResult,
    detect_circular_dependencies,
    revalidate_rules,
    validate_all_rules,
    validate_complete_rule,
    validate_rule,
    validate_rule_set,
)
from data_alchemist.sanitizer import (
    FixContext,
    ModificationPatch,
    ModifyContext,
    apply_patch,
    reconcile_external_patch,
)
from data_alchemist.validators import validate_entities

__version__ = "0.1.0"
