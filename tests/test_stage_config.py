"""
Tests: approval chain configuration store.

Covers read helpers, wholesale replacement, and every validation rule that
must reject a malformed chain before anything is written.
"""

import pytest

from payflow.core.exceptions import StageConfigurationError, ValidationError
from payflow.models import db as _db
from payflow.models.approval import ApprovalStage
from payflow.services import stage_config


class TestReadHelpers:
    def test_empty_chain(self):
        assert stage_config.get_stages() == []
        assert stage_config.get_grouped_stages() == []
        assert stage_config.departments_for_stage(1) == []

    def test_grouped_stages_with_parallel_departments(self, make_department, set_chain):
        a, b, c = make_department(), make_department(), make_department()
        set_chain([[a.id], [c.id, b.id]])

        grouped = stage_config.get_grouped_stages()
        assert grouped == [
            {"stage_order": 1, "department_ids": [a.id]},
            {"stage_order": 2, "department_ids": sorted([b.id, c.id])},
        ]
        assert stage_config.departments_for_stage(2) == sorted([b.id, c.id])
        assert stage_config.departments_for_stage(3) == []

    def test_same_department_in_two_stages_is_allowed(self, make_department, set_chain):
        a, b = make_department(), make_department()
        set_chain([[a.id], [b.id], [a.id]])
        assert stage_config.departments_for_stage(3) == [a.id]


class TestReplaceStages:
    def test_replace_is_wholesale(self, make_department, set_chain):
        a, b, c = make_department(), make_department(), make_department()
        set_chain([[a.id], [b.id]])
        set_chain([[c.id]])

        rows = _db.session.query(ApprovalStage).all()
        assert [(r.stage_order, r.department_id) for r in rows] == [(1, c.id)]

    def test_empty_list_clears_chain(self, make_department, set_chain):
        a = make_department()
        set_chain([[a.id]])
        assert stage_config.replace_stages([]) == []
        _db.session.commit()
        assert stage_config.get_stages() == []

    def test_accepts_plain_lists(self, make_department):
        a, b = make_department(), make_department()
        grouped = stage_config.replace_stages([[a.id], [b.id]])
        assert [g["stage_order"] for g in grouped] == [1, 2]

    def test_unordered_input_is_sorted(self, make_department):
        a, b = make_department(), make_department()
        grouped = stage_config.replace_stages([
            {"stage_order": 2, "department_ids": [b.id]},
            {"stage_order": 1, "department_ids": [a.id]},
        ])
        assert grouped[0] == {"stage_order": 1, "department_ids": [a.id]}


class TestValidation:
    def test_stage_without_departments(self, make_department):
        a = make_department()
        with pytest.raises(StageConfigurationError) as exc:
            stage_config.replace_stages([[a.id], []])
        assert exc.value.details["stage_order"] == 2

    def test_gap_in_stage_orders(self, make_department):
        a, b = make_department(), make_department()
        with pytest.raises(StageConfigurationError, match="contiguous"):
            stage_config.replace_stages([
                {"stage_order": 1, "department_ids": [a.id]},
                {"stage_order": 3, "department_ids": [b.id]},
            ])

    def test_chain_must_start_at_one(self, make_department):
        a = make_department()
        with pytest.raises(StageConfigurationError):
            stage_config.replace_stages([{"stage_order": 2, "department_ids": [a.id]}])

    def test_duplicate_stage_order(self, make_department):
        a, b = make_department(), make_department()
        with pytest.raises(StageConfigurationError):
            stage_config.replace_stages([
                {"stage_order": 1, "department_ids": [a.id]},
                {"stage_order": 1, "department_ids": [b.id]},
            ])

    def test_department_repeated_within_stage(self, make_department):
        a = make_department()
        with pytest.raises(StageConfigurationError, match="more than once"):
            stage_config.replace_stages([[a.id, a.id]])

    def test_unknown_department(self, make_department):
        a = make_department()
        with pytest.raises(StageConfigurationError) as exc:
            stage_config.replace_stages([[a.id, 9999]])
        assert exc.value.details["department_ids"] == [9999]

    def test_inactive_department(self, make_department):
        a = make_department(is_active=False)
        with pytest.raises(StageConfigurationError):
            stage_config.replace_stages([[a.id]])

    def test_failed_validation_keeps_existing_chain(self, make_department, set_chain):
        a, b = make_department(), make_department()
        set_chain([[a.id]])
        with pytest.raises(StageConfigurationError):
            stage_config.replace_stages([[b.id], []])
        assert stage_config.departments_for_stage(1) == [a.id]

    @pytest.mark.parametrize("dept_ids", [[[1, 2]], [{"id": 1}], ["x"], [True], "1,2"])
    def test_non_integer_department_ids(self, dept_ids):
        with pytest.raises(StageConfigurationError, match="department_ids") as exc:
            stage_config.replace_stages([{"stage_order": 1, "department_ids": dept_ids}])
        assert exc.value.details["stage_order"] == 1

    def test_numeric_string_ids_are_accepted(self, make_department):
        a = make_department()
        stage_config.replace_stages([[str(a.id)]])
        assert stage_config.departments_for_stage(1) == [a.id]

    def test_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            stage_config.replace_stages("not a list")


class TestStageApi:
    def test_get_and_put(self, client, make_department):
        a, b = make_department(), make_department()
        _db.session.commit()

        res = client.put("/api/v1/approval-stages", json={
            "stages": [
                {"stage_order": 1, "department_ids": [a.id]},
                {"stage_order": 2, "department_ids": [b.id]},
            ],
        })
        assert res.status_code == 200
        assert len(res.get_json()["stages"]) == 2

        res = client.get("/api/v1/approval-stages")
        body = res.get_json()
        assert body["stages"][1]["department_ids"] == [b.id]
        assert body["rows"][0]["department_name"] == a.name

    def test_put_invalid_chain_returns_422(self, client, make_department):
        a = make_department()
        _db.session.commit()
        res = client.put("/api/v1/approval-stages", json={"stages": [[a.id], []]})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "APPROVAL_STAGE_CONFIG_INVALID"
        assert body["details"]["stage_order"] == 2

    def test_put_nested_department_list_returns_422(self, client):
        res = client.put("/api/v1/approval-stages", json={"stages": [[[1, 2]]]})
        assert res.status_code == 422
        assert res.get_json()["code"] == "APPROVAL_STAGE_CONFIG_INVALID"

    def test_put_requires_stages_key(self, client):
        res = client.put("/api/v1/approval-stages", json={})
        assert res.status_code == 400
