import io
import json

import pytest

from market_dashboard.aggregation_engine.data_loader import MarketDataLoader
from market_dashboard.aggregation_engine.errors import DataLoadError, WarningCode


@pytest.fixture()
def loader():
    return MarketDataLoader()


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def test_load_from_paths(loader, tmp_path, all_tree, flat_tree):
    value = _write(tmp_path, "value.json", json.dumps(all_tree))
    volume = _write(tmp_path, "volume.json", json.dumps(flat_tree))

    inputs = loader.load(str(value), volume=volume)

    assert inputs.value_tree == all_tree
    assert inputs.volume_tree == flat_tree
    assert inputs.has_volume
    assert inputs.segmentation_from_value
    assert not inputs.report.has_issues


def test_load_from_bytes_text_and_file_objects(loader, all_tree):
    payload = json.dumps(all_tree)

    assert loader.load(payload.encode("utf-8")).value_tree == all_tree
    assert loader.load(payload).value_tree == all_tree
    assert loader.load(io.BytesIO(payload.encode("utf-8"))).value_tree == all_tree
    assert loader.load(all_tree).value_tree is all_tree


def test_missing_value_file(loader, tmp_path):
    with pytest.raises(DataLoadError) as exc_info:
        loader.load(tmp_path / "missing.json")

    assert exc_info.value.reason == DataLoadError.NOT_FOUND
    assert exc_info.value.source == "value"


def test_no_value_source(loader):
    with pytest.raises(DataLoadError) as exc_info:
        loader.load(None)
    assert exc_info.value.reason == DataLoadError.NOT_FOUND


@pytest.mark.parametrize("content,reason", [
    ("", DataLoadError.EMPTY),
    ("   \n", DataLoadError.EMPTY),
    ("{}", DataLoadError.EMPTY),
    ("{not json", DataLoadError.UNPARSEABLE),
    ("[1, 2, 3]", DataLoadError.INVALID_STRUCTURE),
])
def test_bad_value_file(loader, tmp_path, content, reason):
    path = _write(tmp_path, "value.json", content)

    with pytest.raises(DataLoadError) as exc_info:
        loader.load(path)

    assert exc_info.value.reason == reason
    assert exc_info.value.to_dict()["error"] == reason


def test_optional_inputs_degrade_to_warnings(loader, tmp_path, all_tree):
    value = _write(tmp_path, "value.json", json.dumps(all_tree))
    segmentation = _write(tmp_path, "segmentation.json", "{broken")

    inputs = loader.load(value, volume=tmp_path / "volume.json", segmentation=segmentation)

    assert inputs.volume_tree is None
    assert inputs.segmentation_tree is None
    assert inputs.segmentation_from_value
    assert len(inputs.report.by_code(WarningCode.MISSING_OPTIONAL_INPUT)) == 1
    assert len(inputs.report.by_code(WarningCode.UNPARSEABLE_OPTIONAL_INPUT)) == 1
    assert inputs.report.summary() == "2 issues detected while importing"
