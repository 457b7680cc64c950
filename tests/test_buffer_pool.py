import struct

import pytest

from ministore.buffer_pool import (
    BP_PAGE_SIZE,
    BPManager,
    BufferPoolError,
    DiskBufferPool,
    PageHandle,
    global_disk_buffer_pool,
)


@pytest.fixture
def pool():
    return DiskBufferPool(10)


@pytest.fixture
def paged_file(tmp_path, pool):
    path = str(tmp_path / "data.pg")
    pool.create_file(path)
    return path


def test_create_file_writes_header_page(paged_file):
    with open(paged_file, "rb") as fh:
        raw = fh.read()
    assert len(raw) == BP_PAGE_SIZE
    page_num, page_count, allocated = struct.unpack_from("<iii", raw, 0)
    assert (page_num, page_count, allocated) == (0, 1, 1)
    assert raw[12] & 0x01 == 0x01


def test_create_existing_file_fails(pool, paged_file):
    with pytest.raises(BufferPoolError) as info:
        pool.create_file(paged_file)
    assert info.value.code == "SCHEMA_DB_EXIST"


def test_open_missing_file_fails(pool, tmp_path):
    with pytest.raises(BufferPoolError) as info:
        pool.open_file(str(tmp_path / "missing.pg"))
    assert info.value.code == "IOERR_ACCESS"


def test_open_twice_returns_same_id(pool, paged_file):
    first = pool.open_file(paged_file)
    assert pool.open_file(paged_file) == first
    assert pool.get_page_count(first) == 1


def test_allocate_page_grows_file(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    assert handle.page_num == 1
    assert pool.get_page_count(file_id) == 2
    pool.unpin_page(handle)
    second = pool.allocate_page(file_id)
    assert second.page_num == 2
    assert pool.get_page_count(file_id) == 3


def test_data_survives_close_and_reopen(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    page_num = handle.page_num
    handle.data[:5] = b"hello"
    pool.mark_dirty(handle)
    pool.unpin_page(handle)
    pool.close_file(file_id)

    other = DiskBufferPool(10)
    reopened = other.open_file(paged_file)
    assert other.get_page_count(reopened) == 2
    again = other.get_this_page(reopened, page_num)
    assert bytes(again.data[:5]) == b"hello"


def test_unpinned_handle_is_closed(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    pool.unpin_page(handle)
    with pytest.raises(BufferPoolError) as info:
        handle.data
    assert info.value.code == "BUFFERPOOL_CLOSED"
    with pytest.raises(BufferPoolError):
        PageHandle().page_num


def test_dispose_pinned_page_fails(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    with pytest.raises(BufferPoolError) as info:
        pool.dispose_page(file_id, handle.page_num)
    assert info.value.code == "BUFFERPOOL_PAGE_PINNED"


def test_disposed_page_is_invalid_and_reused(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    page_num = handle.page_num
    pool.unpin_page(handle)
    pool.dispose_page(file_id, page_num)

    with pytest.raises(BufferPoolError) as info:
        pool.get_this_page(file_id, page_num)
    assert info.value.code == "BUFFERPOOL_INVALID_PAGE_NUM"

    reused = pool.allocate_page(file_id)
    assert reused.page_num == page_num
    assert pool.get_page_count(file_id) == 2


def test_page_beyond_count_is_invalid(pool, paged_file):
    file_id = pool.open_file(paged_file)
    with pytest.raises(BufferPoolError) as info:
        pool.get_this_page(file_id, 5)
    assert info.value.code == "BUFFERPOOL_INVALID_PAGE_NUM"


@pytest.mark.parametrize("file_id", [-1, 1024, 7])
def test_illegal_file_id(pool, file_id):
    with pytest.raises(BufferPoolError) as info:
        pool.get_page_count(file_id)
    assert info.value.code == "BUFFERPOOL_ILLEGAL_FILE_ID"


def test_closed_file_id_is_illegal(pool, paged_file):
    file_id = pool.open_file(paged_file)
    pool.close_file(file_id)
    with pytest.raises(BufferPoolError) as info:
        pool.allocate_page(file_id)
    assert info.value.code == "BUFFERPOOL_ILLEGAL_FILE_ID"


def test_all_frames_pinned_raises_nomem(tmp_path):
    small = DiskBufferPool(2)
    path = str(tmp_path / "small.pg")
    small.create_file(path)
    file_id = small.open_file(path)
    small.allocate_page(file_id)
    with pytest.raises(BufferPoolError) as info:
        small.allocate_page(file_id)
    assert info.value.code == "NOMEM"


def test_eviction_writes_dirty_pages(tmp_path):
    small = DiskBufferPool(3)
    path = str(tmp_path / "evict.pg")
    small.create_file(path)
    file_id = small.open_file(path)
    written = {}
    for marker in (b"alpha", b"bravo", b"charlie", b"delta", b"echo"):
        handle = small.allocate_page(file_id)
        handle.data[: len(marker)] = marker
        small.mark_dirty(handle)
        written[handle.page_num] = marker
        small.unpin_page(handle)
    for page_num, marker in written.items():
        handle = small.get_this_page(file_id, page_num)
        assert bytes(handle.data[: len(marker)]) == marker
        small.unpin_page(handle)


def test_force_page_pinned_fails(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    with pytest.raises(BufferPoolError) as info:
        pool.force_page(file_id, handle.page_num)
    assert info.value.code == "BUFFERPOOL_PAGE_PINNED"


def test_force_page_writes_to_disk(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    page_num = handle.page_num
    handle.data[:4] = b"disk"
    pool.mark_dirty(handle)
    pool.unpin_page(handle)
    pool.force_page(file_id, page_num)
    with open(paged_file, "rb") as fh:
        fh.seek(page_num * BP_PAGE_SIZE)
        raw = fh.read(BP_PAGE_SIZE)
    assert struct.unpack_from("<i", raw, 0)[0] == page_num
    assert raw[4:8] == b"disk"


def test_flush_all_pages_persists_header(pool, paged_file):
    file_id = pool.open_file(paged_file)
    handle = pool.allocate_page(file_id)
    pool.unpin_page(handle)
    pool.flush_all_pages(file_id)
    with open(paged_file, "rb") as fh:
        raw = fh.read(BP_PAGE_SIZE)
    assert struct.unpack_from("<ii", raw, 4) == (2, 2)
    assert pool.get_page_count(file_id) == 2


def test_bp_manager_get_and_lru_eviction():
    manager = BPManager(2)
    first = manager.alloc()
    first.file_desc = 0
    first.page.page_num = 1
    assert manager.get(0, 1) is first

    second = manager.alloc()
    second.file_desc = 0
    second.page.page_num = 2
    assert second is not first
    assert manager.get(0, 1) is first

    third = manager.alloc()
    assert third is second
    assert third.file_desc == -1
    assert third.page.page_num == -1
    assert manager.get(0, 2) is None
    assert manager.get(0, 1) is first


def test_global_pool_is_shared(tmp_path):
    path = str(tmp_path / "global.pg")
    global_disk_buffer_pool().create_file(path)
    file_id = global_disk_buffer_pool().open_file(path)
    assert global_disk_buffer_pool().open_file(path) == file_id
    assert global_disk_buffer_pool().get_page_count(file_id) == 1
    global_disk_buffer_pool().close_file(file_id)
    with pytest.raises(BufferPoolError) as info:
        global_disk_buffer_pool().get_page_count(file_id)
    assert info.value.code == "BUFFERPOOL_ILLEGAL_FILE_ID"