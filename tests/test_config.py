import logging

import pytest

from meshkmeans.config import (
    CentroidInit,
    DEFAULT_K_RANGE,
    KInitMethod,
    KernelType,
    MetricType,
    SegmentationConfig,
)
from meshkmeans.exceptions import InvalidRangeError


def test_defaults():
    config = SegmentationConfig()

    assert config.k is None
    assert config.k_range == DEFAULT_K_RANGE
    assert config.metric is None
    assert config.init == CentroidInit.MOST_DISTANT
    assert config.k_init == KInitMethod.ELBOW
    assert config.kernel == KernelType.GAUSSIAN


def test_names_are_coerced_to_enums():
    config = SegmentationConfig(metric="geodesic_heat", init="kde3d", k_init="silhouette", kernel="cosine")

    assert config.metric is MetricType.GEODESIC_HEAT
    assert config.init is CentroidInit.KDE3D
    assert config.k_init is KInitMethod.SILHOUETTE
    assert config.kernel is KernelType.COSINE


def test_dict_round_trip():
    config = SegmentationConfig(k=4, k_range=(3, 7), metric=MetricType.EUCLIDEAN, seed=9, dihedral_weight=0.5)

    data = config.to_dict()

    assert data["metric"] == "euclidean"
    assert data["k_range"] == [3, 7]
    assert SegmentationConfig.from_dict(data) == config


def test_unknown_keys_are_ignored_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="meshkmeans"):
        config = SegmentationConfig.from_dict({"k": 2, "colour": "red"})

    assert config.k == 2
    assert "colour" in caplog.text


@pytest.mark.parametrize(
    "options",
    [
        {"k_range": (0, 5)},
        {"k_range": (6, 5)},
        {"k": 0},
    ],
)
def test_invalid_ranges(options):
    with pytest.raises(InvalidRangeError):
        SegmentationConfig(**options)


@pytest.mark.parametrize(
    "options",
    [
        {"max_iterations": 0},
        {"tolerance": -1.0},
        {"n_jobs": 0},
        {"heat_time_factor": 0.0},
        {"metric": "manhattan"},
        {"kernel": "box"},
    ],
)
def test_invalid_options(options):
    with pytest.raises(ValueError):
        SegmentationConfig(**options)


def test_strict_mode_rejects_unknown_keys():
    with pytest.raises(ValueError, match="colour"):
        SegmentationConfig.from_dict({"k": 2, "colour": "red"}, strict=True)
