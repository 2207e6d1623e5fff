import threading
from pathlib import Path

import pytest

from ndpaktool.containers import ContainerReader
from ndpaktool.exceptions import IOErrorKind, PackIOError

DATA = bytes(range(256)) * 16


@pytest.fixture
def container(tmp_path: Path) -> Path:
    fpath = tmp_path / "res" / "pack" / "front_0.pk"
    fpath.parent.mkdir(parents=True)
    fpath.write_bytes(DATA)
    return fpath


def test_read(container: Path):
    with ContainerReader() as reader:
        assert reader.read(container, 0, 16) == DATA[:16]
        assert reader.read(container, 100, 1000) == DATA[100:1100]
        assert reader.read(container, len(DATA) - 5, 5) == DATA[-5:]
        assert reader.read(container, len(DATA), 0) == b""


def test_iter_range_chunks(container: Path):
    with ContainerReader() as reader:
        chunks = list(reader.iter_range(container, 10, 1000, chunk_size=256))
    assert [len(x) for x in chunks] == [256, 256, 256, 232]
    assert b"".join(chunks) == DATA[10:1010]


@pytest.mark.parametrize("offset,size", ((0, len(DATA) + 1), (len(DATA), 1), (len(DATA) + 100, 0)))
def test_range_out_of_bounds(container: Path, offset: int, size: int):
    with ContainerReader() as reader:
        with pytest.raises(PackIOError) as e:
            reader.read(container, offset, size)
        assert e.value.kind == IOErrorKind.RANGE_OUT_OF_BOUNDS
        with pytest.raises(PackIOError) as e:
            reader.check_range(container, offset, size)
        assert e.value.kind == IOErrorKind.RANGE_OUT_OF_BOUNDS
        # The reader is still usable afterwards.
        assert reader.read(container, 0, 4) == DATA[:4]


def test_missing_container(tmp_path: Path):
    with ContainerReader() as reader:
        with pytest.raises(PackIOError) as e:
            reader.read(tmp_path / "missing.pk", 0, 1)
        assert e.value.kind == IOErrorKind.MISSING_CONTAINER
        assert len(reader) == 0


def test_directory_container(tmp_path: Path):
    with ContainerReader() as reader:
        with pytest.raises(PackIOError) as e:
            reader.read(tmp_path, 0, 1)
        assert e.value.kind == IOErrorKind.OPEN_FAILED


def test_handles_cached(container: Path):
    reader = ContainerReader()
    first = reader.get(container)
    assert reader.get(str(container)) is first
    reader.read(container, 0, 1)
    assert len(reader) == 1
    reader.close()
    assert len(reader) == 0
    assert first.fobj.closed


def test_concurrent_access(container: Path):
    handles = []
    results = []
    barrier = threading.Barrier(8)

    def worker(reader: ContainerReader, i: int):
        barrier.wait()
        handles.append(reader.get(container))
        offset = i * 100
        results.append((offset, reader.read(container, offset, 300)))

    with ContainerReader() as reader:
        threads = [threading.Thread(target=worker, args=(reader, i)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(reader) == 1
    assert len(handles) == 8
    assert all(x is handles[0] for x in handles)
    for offset, data in results:
        assert data == DATA[offset : offset + 300]
