"""
Tests for frozen dataclass configuration containers.

Tests that each parameter dataclass:
- Can be constructed with valid values and rejects invalid ones
- Is frozen (raises FrozenInstanceError on attribute assignment)
- Supports dataclasses.asdict() and dict-style access
"""

import dataclasses
import math

import pytest

from oneofn.params import DataType, NormalPriorParams, OneOfNParams, RestoreParams
from oneofn.priors import MultivariateNormalConjugate


class TestDataType:
    def test_from_name(self):
        assert DataType.from_name("INTEGER") is DataType.INTEGER

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown data type"):
            DataType.from_name("integer")


class TestNormalPriorParams:
    def test_defaults(self):
        p = NormalPriorParams()
        assert p.mean_precision == 1e-3
        assert p.extra_degrees_freedom == 1.0
        assert p.scale == 1.0

    def test_frozen(self):
        p = NormalPriorParams()
        with pytest.raises(dataclasses.FrozenInstanceError):
            p.scale = 2.0

    def test_slots(self):
        assert not hasattr(NormalPriorParams(), "__dict__")

    def test_asdict(self):
        p = NormalPriorParams(mean_precision=0.5, extra_degrees_freedom=2.0, scale=3.0)
        assert dataclasses.asdict(p) == {
            "mean_precision": 0.5, "extra_degrees_freedom": 2.0, "scale": 3.0,
        }

    def test_dict_access(self):
        p = NormalPriorParams(scale=4.0)
        assert p["scale"] == 4.0
        assert "scale" in p
        assert list(p.keys()) == ["mean_precision", "extra_degrees_freedom", "scale"]
        with pytest.raises(KeyError):
            p["missing"]

    @pytest.mark.parametrize("kwargs", [
        {"mean_precision": 0.0},
        {"extra_degrees_freedom": -1.0},
        {"scale": 0.0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            NormalPriorParams(**kwargs)


class TestOneOfNParams:
    def test_defaults(self):
        p = OneOfNParams()
        assert p.log_weight_floor == pytest.approx(math.log(1e-30))
        assert p.prune_weight_threshold == 1e-3
        assert p.prune_patience == 20

    def test_frozen(self):
        p = OneOfNParams()
        with pytest.raises(dataclasses.FrozenInstanceError):
            p.prune_patience = 3

    @pytest.mark.parametrize("kwargs", [
        {"log_weight_floor": 0.0},
        {"log_weight_floor": -math.inf},
        {"prune_weight_threshold": 1.0},
        {"prune_weight_threshold": -0.1},
        {"prune_patience": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            OneOfNParams(**kwargs)


class TestRestoreParams:
    def test_defaults(self):
        p = RestoreParams()
        assert p.candidate_types is None
        assert p.one_of_n == OneOfNParams()
        assert p.tolerance == 1e-10

    def test_items(self):
        registry = {"normal": MultivariateNormalConjugate}
        p = RestoreParams(candidate_types=registry)
        assert dict(p.items())["candidate_types"] is registry
