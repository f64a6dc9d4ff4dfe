import json

import pytest

from airway_centreline.config import PipelineConfig, RadiusParams


def test_defaults():
    config = PipelineConfig()
    assert config.pruning.voxel_limit == 150
    assert config.radius.num_rays == 16
    assert config.radius.safety_factor == 3.0


def test_save_and_load_round_trip(tmp_path):
    config = PipelineConfig()
    config.radius.workers = 4
    config.pruning.voxel_limit = 80
    path = tmp_path / "nested" / "config.json"
    config.save(path)

    assert json.loads(path.read_text(encoding="utf-8"))["radius"]["workers"] == 4
    assert PipelineConfig.load(path) == config


def test_partial_mapping_keeps_defaults():
    config = PipelineConfig.from_dict({"radius": {"num_rays": 32}})
    assert config.radius.num_rays == 32
    assert config.radius.tangent_window == 2
    assert config.pruning.voxel_limit == 150


@pytest.mark.parametrize(
    "radius",
    [
        RadiusParams(num_rays=7),
        RadiusParams(safety_factor=0.0),
        RadiusParams(sample_step=-0.1),
        RadiusParams(background_samples=0),
    ],
)
def test_invalid_values_raise(radius):
    with pytest.raises(ValueError):
        PipelineConfig(radius=radius)


def test_unknown_keys_raise():
    with pytest.raises(TypeError):
        PipelineConfig.from_dict({"radius": {"rays": 16}})
