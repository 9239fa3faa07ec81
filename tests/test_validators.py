import pytest

from data_alchemist.entities import Client, Task, Worker, split_list, to_int, to_number
from data_alchemist.validators import validate_entities


def test_clean_datasets_produce_empty_map(clients, workers, tasks):
    assert validate_entities(clients, workers, tasks) == {}


@pytest.mark.parametrize("level", [0, 6, -1, 99])
def test_priority_level_out_of_range(clients, workers, tasks, level):
    clients[0]["PriorityLevel"] = level

    errors = validate_entities(clients, workers, tasks)

    assert list(errors) == ["C1"]
    assert any("PriorityLevel" in message for message in errors["C1"])


def test_priority_level_blank_cell_is_reported(clients, workers, tasks):
    clients[1]["PriorityLevel"] = float("nan")

    errors = validate_entities(clients, workers, tasks)

    assert errors == {"C2": ["PriorityLevel must be between 1-5"]}


def test_unknown_requested_task_names_the_id(clients, workers, tasks):
    clients[0]["RequestedTaskIDs"] = " T1, ,T9 ,T2,"

    errors = validate_entities(clients, workers, tasks)

    assert errors == {"C1": ["RequestedTaskID T9 not found"]}


def test_missing_skill_names_the_exact_token(clients, workers, tasks):
    tasks[0]["RequiredSkills"] = "python, rust ,, go"

    errors = validate_entities(clients, workers, tasks)

    assert errors == {
        "T1": ["No worker has required skill: rust", "No worker has required skill: go"]
    }


def test_worker_skills_accept_lists(clients, workers, tasks):
    workers[1]["Skills"] = [" design ", "rust"]
    tasks[0]["RequiredSkills"] = "rust"

    assert validate_entities(clients, workers, tasks) == {}


def test_errors_accumulate_in_check_order(clients, workers, tasks):
    tasks[2].update({"Duration": 0, "RequiredSkills": "welding"})

    errors = validate_entities(clients, workers, tasks)

    assert errors["T3"] == [
        "Duration must be at least 1",
        "No worker has required skill: welding",
    ]


def test_worker_max_load_threshold(clients, workers, tasks):
    workers[0]["MaxLoadPerPhase"] = 0

    errors = validate_entities(clients, workers, tasks)

    assert errors == {"W1": ["MaxLoadPerPhase must be at least 1"]}


def test_missing_identifier_is_keyed_by_row(clients, workers, tasks):
    clients.append({"ClientID": "", "PriorityLevel": 9, "RequestedTaskIDs": ""})

    errors = validate_entities(clients, workers, tasks)

    assert errors["clients#2"] == ["ClientID is required", "PriorityLevel must be between 1-5"]


def test_duplicate_identifier_reported_on_repeat(clients, workers, tasks):
    tasks.append(dict(tasks[0]))

    errors = validate_entities(clients, workers, tasks)

    assert errors == {"T1": ["Duplicate TaskID: T1"]}


def test_numeric_strings_from_csv_are_read(clients, workers, tasks):
    clients[0]["PriorityLevel"] = "4"
    tasks[0]["Duration"] = "2.0"

    assert validate_entities(clients, workers, tasks) == {}


def test_accepts_entity_objects():
    errors = validate_entities(
        [Client("C1", priority_level=2, requested_task_ids=["T1"])],
        [Worker("W1", skills=["python"], max_load_per_phase=1)],
        [Task("T1", duration=1, required_skills=["python"])],
    )

    assert errors == {}


def test_inputs_are_not_mutated(clients, workers, tasks):
    clients[0]["PriorityLevel"] = 7
    before = [dict(c) for c in clients]

    validate_entities(clients, workers, tasks)

    assert clients == before


def test_split_list_handles_json_arrays_and_blanks():
    assert split_list('["T1", "T2"]') == ["T1", "T2"]
    assert split_list(None) == []
    assert split_list(float("nan")) == []


def test_to_number_rejects_text_and_bools():
    assert to_number("abc") is None
    assert to_number(True) is None
    assert to_number(" 3 ") == 3
    assert to_number(2.5) == 2.5


@pytest.mark.parametrize("dataset, field, value, message", [
    ("clients", "PriorityLevel", 2.5, "PriorityLevel must be between 1-5"),
    ("clients", "PriorityLevel", "3.5", "PriorityLevel must be between 1-5"),
    ("workers", "MaxLoadPerPhase", 1.5, "MaxLoadPerPhase must be at least 1"),
    ("tasks", "Duration", 1.5, "Duration must be at least 1"),
])
def test_fractional_values_fail_integer_fields(clients, workers, tasks, dataset, field, value, message):
    data = {"clients": clients, "workers": workers, "tasks": tasks}
    data[dataset][0][field] = value
    entity_id = data[dataset][0][{"clients": "ClientID", "workers": "WorkerID", "tasks": "TaskID"}[dataset]]

    errors = validate_entities(clients, workers, tasks)

    assert errors == {entity_id: [message]}


def test_to_int_accepts_whole_floats_only():
    assert to_int(3.0) == 3
    assert to_int("2") == 2
    assert to_int(2.5) is None
    assert to_int("x") is None


def test_duplicate_notice_leads_shared_list(clients, workers, tasks):
    tasks[0]["Duration"] = 0
    tasks.append(dict(tasks[0], Duration=2))

    errors = validate_entities(clients, workers, tasks)

    assert errors == {"T1": ["Duplicate TaskID: T1", "Duration must be at least 1"]}
