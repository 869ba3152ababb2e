import tempfile
from pathlib import Path

import nrrd
import numpy as np
import pytest
from hypothesis import given, settings as hypothesis_settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays

from bvf.dataset import BVFDataset
from constants import MERGED_TITLE
from container_models.base import Triple
from container_models.descriptors import MergeInput
from container_models.numeric_kind import UINT8, UINT64
from conversion import CombineMode, ConversionPipeline, default_registry, merge_datasets
from exceptions import IncompatibleInputError, UnmergeableDatasetsError
from helper_function import unwrap_failure, unwrap_result
from settings import Settings


def write_nrrd(path: Path, data: np.ndarray, spacings=(1.0, 1.0, 1.0)) -> Path:
    nrrd.write(str(path), data, {"spacings": list(spacings)}, index_order="C")
    return path


def read_nrrd(path: Path) -> np.ndarray:
    data, _ = nrrd.read(str(path), index_order="C")
    return data


@pytest.fixture
def constant_inputs(tmp_path: Path) -> tuple[Path, Path]:
    return (
        write_nrrd(tmp_path / "a.nrrd", np.full((4, 4, 4), 10, np.uint8)),
        write_nrrd(tmp_path / "b.nrrd", np.full((4, 4, 4), 20, np.uint8)),
    )


class TestMergeDatasets:
    def test_max_of_two_constant_volumes(
        self, pipeline: ConversionPipeline, constant_inputs, tmp_path: Path
    ):
        # Arrange
        inputs = [MergeInput(source_path=path) for path in constant_inputs]

        # Act
        target = unwrap_result(
            merge_datasets(pipeline, inputs, tmp_path / "merged.bvf", CombineMode.MAX)
        )

        # Assert
        with BVFDataset(target) as dataset:
            assert dataset.domain_size(0) == Triple(4, 4, 4)
            assert dataset.kind == UINT8
            assert dataset.value_range() == (20.0, 20.0)
            assert dataset.meta.title == MERGED_TITLE

    def test_single_input_identity_accumulate_is_exact(
        self, pipeline: ConversionPipeline, tmp_path: Path, ramp_volume
    ):
        source = write_nrrd(tmp_path / "ramp.nrrd", ramp_volume)

        target = unwrap_result(
            merge_datasets(
                pipeline,
                [MergeInput(source_path=source)],
                tmp_path / "same.nrrd",
                CombineMode.ACCUMULATE,
            )
        )

        np.testing.assert_array_equal(read_nrrd(target), ramp_volume)

    def test_scale_and_bias_apply_per_input(
        self, pipeline: ConversionPipeline, constant_inputs, tmp_path: Path
    ):
        inputs = [
            MergeInput(source_path=constant_inputs[0], scale=2.0, bias=5.0),
            MergeInput(source_path=constant_inputs[1], scale=0.5),
        ]

        target = unwrap_result(
            merge_datasets(pipeline, inputs, tmp_path / "sum.nrrd", CombineMode.ACCUMULATE)
        )

        np.testing.assert_array_equal(read_nrrd(target), 35)

    def test_transformed_values_saturate(
        self, pipeline: ConversionPipeline, constant_inputs, tmp_path: Path
    ):
        inputs = [
            MergeInput(source_path=constant_inputs[0], scale=100.0),
            MergeInput(source_path=constant_inputs[1], scale=-1.0),
        ]

        target = unwrap_result(
            merge_datasets(pipeline, inputs, tmp_path / "clipped.nrrd", CombineMode.MAX)
        )

        np.testing.assert_array_equal(read_nrrd(target), 255)

    def test_integer_accumulation_wraps(self, pipeline: ConversionPipeline, tmp_path: Path):
        inputs = [
            MergeInput(source_path=write_nrrd(tmp_path / f"{name}.nrrd", np.full((2, 2, 2), 200, np.uint8)))
            for name in "ab"
        ]

        target = unwrap_result(
            merge_datasets(pipeline, inputs, tmp_path / "wrapped.nrrd", CombineMode.ACCUMULATE)
        )

        np.testing.assert_array_equal(read_nrrd(target), (200 + 200) % 256)

    def test_container_inputs_are_normalized(
        self, pipeline: ConversionPipeline, make_container, tmp_path: Path, temp_dir: Path
    ):
        first = make_container(np.full((4, 4, 4), 7, np.int16), name="first")
        second = make_container(np.full((4, 4, 4), -3, np.int16), name="second")

        target = unwrap_result(
            merge_datasets(
                pipeline,
                [MergeInput(source_path=first), MergeInput(source_path=second)],
                tmp_path / "from_containers.nrrd",
                CombineMode.ACCUMULATE,
            )
        )

        np.testing.assert_array_equal(read_nrrd(target), 4)
        assert list(temp_dir.iterdir()) == []

    def test_differing_domain_sizes_are_rejected_before_output(
        self, pipeline: ConversionPipeline, tmp_path: Path, temp_dir: Path
    ):
        # Arrange
        inputs = [
            MergeInput(source_path=write_nrrd(tmp_path / "small.nrrd", np.zeros((4, 4, 4), np.uint8))),
            MergeInput(source_path=write_nrrd(tmp_path / "large.nrrd", np.zeros((4, 4, 5), np.uint8))),
        ]
        target = tmp_path / "never.bvf"

        # Act
        error = unwrap_failure(merge_datasets(pipeline, inputs, target))

        # Assert
        assert isinstance(error, UnmergeableDatasetsError)
        assert "domain size" in str(error)
        assert not target.exists()
        assert list(temp_dir.iterdir()) == []

    def test_differing_numeric_kinds_are_rejected(
        self, pipeline: ConversionPipeline, tmp_path: Path
    ):
        inputs = [
            MergeInput(source_path=write_nrrd(tmp_path / "u8.nrrd", np.zeros((2, 2, 2), np.uint8))),
            MergeInput(source_path=write_nrrd(tmp_path / "u16.nrrd", np.zeros((2, 2, 2), np.uint16))),
        ]

        error = unwrap_failure(merge_datasets(pipeline, inputs, tmp_path / "never.nrrd"))

        assert isinstance(error, UnmergeableDatasetsError)
        assert "numeric kind" in str(error)

    def test_differing_aspect_only_warns(
        self, pipeline: ConversionPipeline, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ):
        inputs = [
            MergeInput(source_path=write_nrrd(tmp_path / "a.nrrd", np.ones((2, 2, 2), np.uint8))),
            MergeInput(
                source_path=write_nrrd(tmp_path / "b.nrrd", np.ones((2, 2, 2), np.uint8), (2.0, 1.0, 1.0))
            ),
        ]

        result = merge_datasets(pipeline, inputs, tmp_path / "warned.nrrd")

        assert unwrap_result(result).exists()
        assert "aspect ratio" in caplog.text

    def test_64_bit_inputs_merge_into_a_container(
        self, pipeline: ConversionPipeline, tmp_path: Path
    ):
        # Arrange
        base = np.arange(4 * 4 * 4, dtype=np.uint64).reshape(4, 4, 4)
        inputs = [
            MergeInput(source_path=write_nrrd(tmp_path / "low.nrrd", base)),
            MergeInput(source_path=write_nrrd(tmp_path / "high.nrrd", base * 2)),
        ]

        # Act
        target = unwrap_result(merge_datasets(pipeline, inputs, tmp_path / "wide.bvf"))

        # Assert
        with BVFDataset(target) as dataset:
            assert dataset.kind == UINT64
            assert dataset.value_range() == (0.0, 126.0)

    @pytest.mark.parametrize(
        "fields",
        [
            pytest.param({"header_skip": 16}, id="header_skip"),
            pytest.param({"owns_temp_file": True}, id="owns_temp_file"),
        ],
    )
    def test_fields_of_normalized_streams_are_rejected(
        self, pipeline: ConversionPipeline, constant_inputs, tmp_path: Path, fields
    ):
        # Arrange
        inputs = [
            MergeInput(source_path=constant_inputs[0]),
            MergeInput(source_path=constant_inputs[1], **fields),
        ]
        target = tmp_path / "never.bvf"

        # Act
        error = unwrap_failure(merge_datasets(pipeline, inputs, target))

        # Assert
        assert isinstance(error, IncompatibleInputError)
        assert "Merge input 1" in str(error)
        assert not target.exists()
        assert constant_inputs[1].exists()

    def test_nothing_to_merge(self, pipeline: ConversionPipeline, tmp_path: Path):
        assert unwrap_failure(merge_datasets(pipeline, [], tmp_path / "empty.bvf"))

    def test_brick_size_below_minimum_raises(
        self, pipeline: ConversionPipeline, constant_inputs, tmp_path: Path
    ):
        with pytest.raises(ValueError):
            merge_datasets(
                pipeline,
                [MergeInput(source_path=path) for path in constant_inputs],
                tmp_path / "tiny.bvf",
                max_brick_size=8,
            )


class TestMergeOrderInvariance:
    @hypothesis_settings(max_examples=10, deadline=None)
    @given(
        arrays(np.int16, (3, 4, 5)),
        arrays(np.int16, (3, 4, 5)),
        st.floats(-2, 2, allow_nan=False),
    )
    def test_max_does_not_depend_on_input_order(self, first, second, scale):
        with tempfile.TemporaryDirectory() as directory:
            # Arrange
            root = Path(directory)
            work = root / "work"
            work.mkdir()
            pipeline = ConversionPipeline(
                default_registry(), Settings(temp_dir=work, max_brick_size=32, brick_overlap=2)  # type: ignore
            )
            a = MergeInput(source_path=write_nrrd(root / "a.nrrd", first), scale=scale)
            b = MergeInput(source_path=write_nrrd(root / "b.nrrd", second), bias=1.0)

            # Act
            forward = unwrap_result(merge_datasets(pipeline, [a, b], root / "ab.nrrd"))
            backward = unwrap_result(merge_datasets(pipeline, [b, a], root / "ba.nrrd"))

            # Assert
            np.testing.assert_array_equal(read_nrrd(forward), read_nrrd(backward))
