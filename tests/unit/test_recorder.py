from datetime import datetime

import pytest

from view_planner.config import METRIC_NAMES
from view_planner.recorder import BASE_FIELDS, PlanningDataRecorder
from view_planner.scoring import ReturnValueInfo
from view_planner.views import Pose, View


def _recorder(tmp_path):
    return PlanningDataRecorder(str(tmp_path) + "/", METRIC_NAMES)


@pytest.mark.unit
def test_base_schema_is_fixed_fields_then_metrics(tmp_path):
    recorder = _recorder(tmp_path)

    assert recorder.names == list(BASE_FIELDS) + list(METRIC_NAMES)
    assert recorder.index_for("cost") == 11
    assert recorder.index_for("TotalNrOfOccupieds") == 20


@pytest.mark.unit
def test_index_for_is_idempotent(tmp_path):
    recorder = _recorder(tmp_path)

    first = recorder.index_for("planning_time")
    second = recorder.index_for("planning_time")

    assert first == second == 21
    assert recorder.names.count("planning_time") == 1


@pytest.mark.unit
def test_extra_fields_grow_only_the_written_row(tmp_path):
    recorder = _recorder(tmp_path)
    recorder.append_record([1.0, 2.0, 3.0])
    recorder.append_record([4.0], {"planning_time": 0.5, "retries": 2})

    assert recorder.written_width(0) == 3
    assert recorder.written_width(1) == 23
    second = recorder.row(1)
    assert len(second) == 23
    assert second[0] == 4.0
    assert second[1:21] == [0.0] * 20
    assert second[21:] == [0.5, 2.0]


@pytest.mark.unit
def test_rows_written_before_a_column_read_back_as_zero(tmp_path):
    recorder = _recorder(tmp_path)
    recorder.append_record([1.0] * 21)
    recorder.append_record([2.0] * 21, {"planning_time": 7.0})

    column = recorder.index_for("planning_time")
    matrix = recorder.as_matrix()

    assert recorder.row(0)[column] == 0.0
    assert recorder.row(1)[column] == 7.0
    assert recorder.rows() == [recorder.row(0), recorder.row(1)]
    assert matrix.shape == (2, 22)
    assert matrix[0, 21] == 0.0
    assert matrix[1, 21] == 7.0


@pytest.mark.unit
def test_base_values_longer_than_schema_are_rejected(tmp_path):
    recorder = _recorder(tmp_path)

    with pytest.raises(ValueError):
        recorder.append_record([0.0] * 22)


@pytest.mark.unit
def test_record_nbv_lays_out_pose_return_info_cost_and_information(tmp_path):
    recorder = _recorder(tmp_path)
    view = View(pose=Pose(position=(1.0, 2.0, 3.0), orientation=(0.0, 0.0, 0.0, 1.0)))
    info = ReturnValueInfo(return_value=0.5, winning_margin=0.25, return_value_mean=0.1, return_value_stddev=0.2)

    recorder.record_nbv(view, info, 4.0, [9.0, 8.0])

    assert recorder.row(0) == [1.0, 2.0, 3.0, 0.0, 0.0, 0.0, 1.0, 0.5, 0.25, 0.1, 0.2, 4.0, 9.0, 8.0] + [0.0] * 7
    assert recorder.written_width(0) == 14


@pytest.mark.unit
def test_record_nbv_truncates_surplus_information(tmp_path):
    recorder = _recorder(tmp_path)
    info = ReturnValueInfo(0.0, 0.0, 0.0, 0.0)

    recorder.record_nbv(View(), info, 1.0, [1.0] * 12)

    assert len(recorder.row(0)) == len(BASE_FIELDS) + len(METRIC_NAMES)


@pytest.mark.unit
def test_persist_writes_header_and_rectangular_rows(tmp_path):
    recorder = _recorder(tmp_path)
    recorder.append_record([1.5, 2.0])
    recorder.append_record([3.0], {"planning_time": 0.25})

    path = recorder.persist(now=datetime(2024, 5, 17, 10, 30, 0, 123456))

    assert path == f"{tmp_path}/planning_data20240517_103000_123456.data"
    lines = open(path, encoding="utf-8").read().splitlines()
    assert lines[0].split(" ") == list(BASE_FIELDS) + list(METRIC_NAMES) + ["planning_time"]
    assert lines[1].split(" ") == ["1.5", "2"] + ["0"] * 20
    assert lines[2].split(" ") == ["3"] + ["0"] * 20 + ["0.25"]


@pytest.mark.unit
def test_persist_creates_missing_folder_and_writes_header_only(tmp_path):
    recorder = PlanningDataRecorder(str(tmp_path / "runs") + "/", ["a"])

    path = recorder.persist()

    lines = open(path, encoding="utf-8").read().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("cost a")
