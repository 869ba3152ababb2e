from pathlib import Path

import numpy as np
import pytest

from bvf.format import (
    BlockSemantic,
    BVFWriter,
    is_bvf_file,
    read_global_header,
    verify_checksum,
)
from constants import BVF_MAGIC
from exceptions import DatasetOpenError


@pytest.fixture
def container(tmp_path: Path) -> Path:
    path = tmp_path / "blocks.bvf"
    with BVFWriter(path) as writer:
        writer.add_block(BlockSemantic.MAXMIN, {"note": "first"}, np.arange(4, dtype="<f8"))
        writer.add_block(BlockSemantic.GEOMETRY, {}, b"mesh bytes")
    return path


class TestBVFWriter:
    def test_file_starts_with_magic(self, container: Path):
        assert container.read_bytes().startswith(BVF_MAGIC)

    def test_table_of_contents_lists_blocks_in_order(self, container: Path):
        header = read_global_header(container)

        assert [block.semantic for block in header.blocks] == [
            BlockSemantic.MAXMIN,
            BlockSemantic.GEOMETRY,
        ]
        assert header.blocks[0].meta == {"note": "first"}
        assert header.blocks[0].size == 32
        assert header.blocks[1].offset == header.blocks[0].offset + 32

    def test_payload_is_stored_verbatim(self, container: Path):
        block = read_global_header(container).blocks_of(BlockSemantic.GEOMETRY)[0]
        with open(container, "rb") as file:
            file.seek(block.offset)
            assert file.read(block.size) == b"mesh bytes"

    def test_add_block_from_file_copies_a_range(self, tmp_path: Path):
        # Arrange
        source = tmp_path / "source.bin"
        source.write_bytes(bytes(range(100)))
        path = tmp_path / "copied.bvf"

        # Act
        with BVFWriter(path) as writer:
            writer.add_block_from_file(BlockSemantic.GEOMETRY, {}, source, 10, 20)

        # Assert
        block = read_global_header(path).blocks[0]
        with open(path, "rb") as file:
            file.seek(block.offset)
            assert file.read(block.size) == bytes(range(10, 30))

    def test_partial_file_is_removed_when_writing_fails(self, tmp_path: Path):
        path = tmp_path / "broken.bvf"

        with pytest.raises(RuntimeError):
            with BVFWriter(path) as writer:
                writer.add_block(BlockSemantic.GEOMETRY, {}, b"data")
                raise RuntimeError("interrupted")

        assert not path.exists()


class TestChecksum:
    def test_fresh_container_verifies(self, container: Path):
        assert verify_checksum(container)

    def test_corrupted_payload_fails_verification(self, container: Path):
        # Arrange
        data = bytearray(container.read_bytes())
        data[len(BVF_MAGIC) + 2] ^= 0xFF
        container.write_bytes(bytes(data))

        # Act / Assert
        assert not verify_checksum(container)

    def test_unchecked_container_verifies_trivially(self, tmp_path: Path):
        path = tmp_path / "unchecked.bvf"
        with BVFWriter(path, checksum=False) as writer:
            writer.add_block(BlockSemantic.GEOMETRY, {}, b"data")

        assert read_global_header(path).checksum_semantics == "none"
        assert verify_checksum(path)


class TestReadGlobalHeader:
    def test_foreign_file_is_rejected(self, tmp_path: Path):
        path = tmp_path / "other.bvf"
        path.write_bytes(b"NRRD0004\n" + bytes(64))

        with pytest.raises(DatasetOpenError):
            read_global_header(path)
        assert not is_bvf_file(path)

    def test_missing_file_is_not_bvf(self, tmp_path: Path):
        assert not is_bvf_file(tmp_path / "missing.bvf")

    def test_truncated_file_is_rejected(self, container: Path):
        container.write_bytes(container.read_bytes()[:-20])

        assert not is_bvf_file(container)
