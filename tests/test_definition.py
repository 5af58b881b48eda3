"""Tests for the YAML network definition schema (engines/definition.py)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cnnfeat.engines.definition import LayerSpec, NetDefinition, load_definition
from cnnfeat.geometry import Size

from conftest import TOY_MULTI, write_net


def _net(*layers, **kwargs):
    return NetDefinition(layers=list(layers), **kwargs)


class TestLayerSpec:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Convolution", "conv"),
            ("conv", "conv"),
            ("Pooling", "pool"),
            ("InnerProduct", "fc"),
            ("Linear", "fc"),
            ("ReLU", "relu"),
            ("LRN", "lrn"),
            ("Eltwise", "eltwise"),
        ],
    )
    def test_type_aliases(self, raw, expected):
        layer = LayerSpec(name="x", type=raw, num_output=2)
        assert layer.type == expected

    def test_kernel_pair_is_height_width(self):
        layer = LayerSpec(name="c", type="conv", num_output=2, kernel_size=[3, 5], stride=2)
        assert layer.kernel_xy == Size(5, 3)
        assert layer.stride_xy == Size(2, 2)
        assert layer.pad_xy == Size(0, 0)

    def test_num_output_required_for_conv(self):
        with pytest.raises(ValidationError, match="num_output"):
            LayerSpec(name="c", type="Convolution", kernel_size=3)

    def test_rejects_zero_stride_and_negative_pad(self):
        with pytest.raises(ValidationError):
            LayerSpec(name="p", type="pool", stride=0)
        with pytest.raises(ValidationError):
            LayerSpec(name="p", type="pool", pad=-1)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            LayerSpec(name="p", type="pool", dilation=2)


class TestNetDefinition:
    def test_bottom_defaults_to_previous(self):
        net = _net(
            {"name": "a", "type": "conv", "num_output": 2},
            {"name": "b", "type": "relu"},
        )
        assert net.layers[0].bottom is None
        assert net.layers[1].bottom == "a"

    def test_explicit_bottom_must_be_earlier(self):
        with pytest.raises(ValidationError, match="not an earlier layer"):
            _net(
                {"name": "a", "type": "conv", "num_output": 2, "bottom": "b"},
                {"name": "b", "type": "relu"},
            )

    def test_duplicate_names(self):
        with pytest.raises(ValidationError, match="duplicate"):
            _net({"name": "a", "type": "relu"}, {"name": "a", "type": "relu"})

    def test_needs_layers(self):
        with pytest.raises(ValidationError):
            NetDefinition(layers=[])

    def test_channels_propagate(self):
        net = _net(
            {"name": "r0", "type": "relu"},
            {"name": "c1", "type": "conv", "num_output": 8},
            {"name": "p1", "type": "pool"},
            {"name": "side", "type": "relu", "bottom": "r0"},
            input={"channels": 1},
        )
        assert net.channels() == [1, 8, 8, 1]

    def test_load_definition(self, tmp_path):
        path, _ = write_net(tmp_path, "toy", TOY_MULTI)
        net = load_definition(path)
        assert net.name == "toy-multi"
        assert net.input.channel_order == "bgr"
        assert [l.name for l in net.layers][-1] == "fc3"
        assert net.channels() == [4, 4, 4, 6, 6, 6, 10]

    def test_load_definition_not_a_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="not a mapping"):
            load_definition(path)
