"""Tests for agentplan.tasks.validate: plan input checks."""

from __future__ import annotations

import pytest

from agentplan.errors import ValidationError
from agentplan.tasks.model import Task
from agentplan.tasks.validate import build_tasks, validate, validate_raw_task


def _raw(id: str, deps: list[str] | None = None) -> dict:
    return {
        "id": id,
        "designated_agent": "backend-agent",
        "description": f"Do {id}",
        "files_to_modify": [],
        "dependencies": deps or [],
    }


class TestValidateRawTask:
    def test_valid_task_has_no_errors(self):
        assert validate_raw_task(_raw("TASK-001"), 0) == []

    def test_non_object(self):
        assert validate_raw_task("TASK-001", 2) == ["tasks[2]: must be an object"]

    def test_missing_fields_reported(self):
        errors = validate_raw_task({"id": "TASK-001"}, 0)
        joined = "\n".join(errors)
        assert "'designated_agent' is required" in joined
        assert "'description' is required" in joined
        assert "'files_to_modify' is required" in joined
        assert "'dependencies' is required" in joined

    def test_list_fields_must_hold_strings(self):
        raw = _raw("TASK-001")
        raw["files_to_modify"] = ["a.py", 3]
        assert validate_raw_task(raw, 0) == ["tasks[0]: 'files_to_modify' must be an array of strings"]

    @pytest.mark.parametrize("bad_id", ["T1", "TASK-1", "task-001", "TASK-00a"])
    def test_id_format(self, bad_id):
        errors = validate_raw_task(_raw(bad_id), 0)
        assert any("must look like TASK-001" in e for e in errors)


class TestValidateGraph:
    def test_duplicate_ids(self):
        tasks = [Task.from_dict(_raw("TASK-001")), Task.from_dict(_raw("TASK-001"))]
        assert "Duplicate task id: TASK-001" in validate(tasks)

    def test_dangling_reference(self):
        tasks = [Task.from_dict(_raw("TASK-001", ["TASK-009"]))]
        assert validate(tasks) == ["TASK-001 depends on unknown task(s): TASK-009"]

    def test_cycle_named(self):
        tasks = [
            Task.from_dict(_raw("TASK-001", ["TASK-002"])),
            Task.from_dict(_raw("TASK-002", ["TASK-001"])),
        ]
        assert validate(tasks) == ["Dependency cycle: TASK-001 -> TASK-002 -> TASK-001"]


class TestBuildTasks:
    def test_returns_task_records(self):
        tasks = build_tasks("goal", "syn", [_raw("TASK-001"), _raw("TASK-002", ["TASK-001"])])
        assert [t.id for t in tasks] == ["TASK-001", "TASK-002"]
        assert tasks[1].dependencies == ["TASK-001"]

    def test_accepts_task_instances(self):
        task = Task.from_dict(_raw("TASK-001"))
        assert build_tasks("goal", "syn", [task]) == [task]

    @pytest.mark.parametrize(
        ("description", "synopsis", "tasks", "fragment"),
        [
            ("", "syn", [_raw("TASK-001")], "task_description is required"),
            ("goal", "  ", [_raw("TASK-001")], "synopsis is required"),
            ("goal", "syn", [], "tasks array is required"),
            ("goal", "syn", None, "tasks array is required"),
        ],
    )
    def test_top_level_fields_required(self, description, synopsis, tasks, fragment):
        with pytest.raises(ValidationError) as exc:
            build_tasks(description, synopsis, tasks)
        assert fragment in str(exc.value)

    def test_cycle_error_carries_cycle(self):
        with pytest.raises(ValidationError) as exc:
            build_tasks("g", "s", [_raw("TASK-001", ["TASK-002"]), _raw("TASK-002", ["TASK-001"])])
        assert exc.value.cycle == ["TASK-001", "TASK-002", "TASK-001"]
        assert exc.value.to_dict()["cycle"] == ["TASK-001", "TASK-002", "TASK-001"]

    def test_dangling_error_carries_missing(self):
        with pytest.raises(ValidationError) as exc:
            build_tasks("g", "s", [_raw("TASK-001", ["TASK-404"])])
        assert exc.value.missing == {"TASK-001": ["TASK-404"]}

    def test_long_chain_in_reverse_order(self):
        raw = [_raw(f"TASK-{i:04d}", [f"TASK-{i - 1:04d}"] if i > 1 else []) for i in range(1, 1501)]
        tasks = build_tasks("g", "s", raw[::-1])
        assert len(tasks) == 1500
        assert tasks[0].id == "TASK-1500"

    def test_all_problems_listed(self):
        with pytest.raises(ValidationError) as exc:
            build_tasks("g", "s", [_raw("TASK-001"), {"id": "TASK-002"}, "nope"])
        assert len(exc.value.errors) >= 4
