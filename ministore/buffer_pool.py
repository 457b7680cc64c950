"""Paged file access through a fixed-size in-memory frame cache."""

from __future__ import annotations

import functools
import os
import struct
import time
from dataclasses import dataclass, field

BP_INVALID_PAGE_NUM = -1
BP_PAGE_SIZE = 1 << 12
_PAGE_NUM_FORMAT = "<i"
_PAGE_NUM_SIZE = struct.calcsize(_PAGE_NUM_FORMAT)
BP_PAGE_DATA_SIZE = BP_PAGE_SIZE - _PAGE_NUM_SIZE
_SUB_HEADER_FORMAT = "<ii"
BP_FILE_SUB_HDR_SIZE = struct.calcsize(_SUB_HEADER_FORMAT)
BP_BUFFER_SIZE = 50
MAX_OPEN_FILE = 1024
MAX_PAGES_PER_FILE = (BP_PAGE_DATA_SIZE - BP_FILE_SUB_HDR_SIZE) * 8


class BufferPoolError(Exception):
    """Raised when a buffer pool operation fails; ``code`` names the failure."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


def _current_time() -> int:
    return time.monotonic_ns()


@dataclass
class Page:
    """One on-disk page: a page number followed by its data area."""

    page_num: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BP_PAGE_DATA_SIZE))

    def to_bytes(self) -> bytes:
        return struct.pack(_PAGE_NUM_FORMAT, self.page_num) + bytes(self.data)

    def load(self, raw: bytes) -> None:
        """Overwrite this page in place from its serialized form."""
        (self.page_num,) = struct.unpack_from(_PAGE_NUM_FORMAT, raw, 0)
        self.data[:] = raw[_PAGE_NUM_SIZE:BP_PAGE_SIZE]

    def clear(self, page_num: int = 0) -> None:
        self.page_num = page_num
        self.data[:] = bytes(BP_PAGE_DATA_SIZE)


@dataclass(eq=False)
class Frame:
    """A slot of the buffer holding one page of one file."""

    dirty: bool = False
    pin_count: int = 0
    acc_time: int = 0
    file_desc: int = -1
    page: Page = field(default_factory=Page)


@dataclass
class PageHandle:
    """A pinned reference to a page held in a frame."""

    open: bool = False
    frame: Frame | None = None

    def _checked_frame(self) -> Frame:
        if not self.open or self.frame is None:
            raise BufferPoolError("page handle is closed", "BUFFERPOOL_CLOSED")
        return self.frame

    @property
    def page_num(self) -> int:
        return self._checked_frame().page.page_num

    @property
    def data(self) -> bytearray:
        return self._checked_frame().page.data


class BPManager:
    """Fixed set of frames with a most-recently-used ordering."""

    def __init__(self, size: int = BP_BUFFER_SIZE) -> None:
        self.size = size
        self.frames = [Frame() for _ in range(size)]
        self.allocated = [False] * size
        self.lru: list[int] = []

    def alloc(self) -> Frame:
        """Hand out a free frame, evicting the least recently used one if full."""
        free_index = next(
            (i for i, used in enumerate(self.allocated) if not used), None
        )
        if free_index is None:
            free_index = self.lru.pop()
            victim = self.frames[free_index]
            victim.file_desc = -1
            victim.page.page_num = -1
        self.lru.insert(0, free_index)
        self.allocated[free_index] = True
        return self.frames[free_index]

    def get(self, file_desc: int, page_num: int) -> Frame | None:
        """Find the frame holding a page and mark it most recently used."""
        for position, index in enumerate(self.lru):
            frame = self.frames[index]
            if frame.file_desc == file_desc and frame.page.page_num == page_num:
                if position != 0:
                    del self.lru[position]
                    self.lru.insert(0, index)
                return frame
        return None


class _FileHandle:
    def __init__(self, file_name: str, file_desc: int, hdr_frame: Frame) -> None:
        self.file_name = file_name
        self.file_desc = file_desc
        self.hdr_frame = hdr_frame

    @property
    def _header(self) -> bytearray:
        return self.hdr_frame.page.data

    @property
    def page_count(self) -> int:
        return struct.unpack_from("<i", self._header, 0)[0]

    @page_count.setter
    def page_count(self, value: int) -> None:
        struct.pack_into("<i", self._header, 0, value)

    @property
    def allocated_pages(self) -> int:
        return struct.unpack_from("<i", self._header, 4)[0]

    @allocated_pages.setter
    def allocated_pages(self, value: int) -> None:
        struct.pack_into("<i", self._header, 4, value)

    def _bit_position(self, page_num: int) -> tuple[int, int]:
        return BP_FILE_SUB_HDR_SIZE + page_num // 8, 1 << (page_num % 8)

    def is_allocated(self, page_num: int) -> bool:
        offset, mask = self._bit_position(page_num)
        return bool(self._header[offset] & mask)

    def set_allocated(self, page_num: int) -> None:
        offset, mask = self._bit_position(page_num)
        self._header[offset] |= mask

    def set_free(self, page_num: int) -> None:
        offset, mask = self._bit_position(page_num)
        self._header[offset] &= ~mask & 0xFF


class DiskBufferPool:
    """Opens paged files and caches their pages in a bounded set of frames."""

    def __init__(self, buffer_size: int = BP_BUFFER_SIZE) -> None:
        self._manager = BPManager(buffer_size)
        self._open_files: list[_FileHandle | None] = [None] * MAX_OPEN_FILE

    def create_file(self, file_name: str) -> None:
        """Create a new paged file holding only its header page."""
        try:
            fd = os.open(
                file_name, os.O_RDWR | os.O_CREAT | os.O_EXCL, 0o600
            )
        except OSError as exc:
            raise BufferPoolError(
                f"failed to create {file_name}: {exc.strerror}", "SCHEMA_DB_EXIST"
            ) from exc
        try:
            page = Page()
            struct.pack_into(_SUB_HEADER_FORMAT, page.data, 0, 1, 1)
            page.data[BP_FILE_SUB_HDR_SIZE] |= 0x01
            try:
                os.lseek(fd, 0, os.SEEK_SET)
            except OSError as exc:
                raise BufferPoolError(
                    f"failed to seek {file_name}", "IOERR_SEEK"
                ) from exc
            try:
                written = os.write(fd, page.to_bytes())
            except OSError as exc:
                raise BufferPoolError(
                    f"failed to write header of {file_name}", "IOERR_WRITE"
                ) from exc
            if written != BP_PAGE_SIZE:
                raise BufferPoolError(
                    f"failed to write header of {file_name}", "IOERR_WRITE"
                )
        finally:
            os.close(fd)

    def open_file(self, file_name: str) -> int:
        """Open a paged file and return its file id."""
        for file_id, handle in enumerate(self._open_files):
            if handle is not None and handle.file_name == file_name:
                return file_id

        slot = next(
            (i for i, handle in enumerate(self._open_files) if handle is None), None
        )
        if slot is None:
            raise BufferPoolError(
                f"too many files opened to open {file_name}",
                "BUFFERPOOL_OPEN_TOO_MANY_FILES",
            )

        try:
            fd = os.open(file_name, os.O_RDWR)
        except OSError as exc:
            raise BufferPoolError(
                f"failed to open {file_name}: {exc.strerror}", "IOERR_ACCESS"
            ) from exc

        try:
            hdr_frame = self._allocate_block()
        except BufferPoolError:
            os.close(fd)
            raise
        hdr_frame.dirty = False
        hdr_frame.acc_time = _current_time()
        hdr_frame.file_desc = fd
        hdr_frame.pin_count = 1
        try:
            self._load_page(0, fd, hdr_frame)
        except BufferPoolError:
            hdr_frame.pin_count = 0
            self._dispose_block(hdr_frame)
            os.close(fd)
            raise

        self._open_files[slot] = _FileHandle(file_name, fd, hdr_frame)
        return slot

    def close_file(self, file_id: int) -> None:
        """Flush every page of a file, release its frames and close it."""
        handle = self._file_handle(file_id)
        handle.hdr_frame.pin_count -= 1
        try:
            self._force_all_pages(handle, release_pinned=True)
        except BufferPoolError:
            handle.hdr_frame.pin_count += 1
            raise
        try:
            os.close(handle.file_desc)
        except OSError as exc:
            raise BufferPoolError(
                f"failed to close {handle.file_name}", "IOERR_CLOSE"
            ) from exc
        self._open_files[file_id] = None

    def get_this_page(self, file_id: int, page_num: int) -> PageHandle:
        """Pin a page of a file in the buffer and return a handle to it."""
        handle = self._file_handle(file_id)
        self._check_page_num(page_num, handle)

        for frame in self._frames_of(handle):
            if frame.page.page_num == page_num:
                frame.pin_count += 1
                frame.acc_time = _current_time()
                return PageHandle(open=True, frame=frame)

        frame = self._allocate_block()
        frame.dirty = False
        frame.file_desc = handle.file_desc
        frame.pin_count = 1
        frame.acc_time = _current_time()
        try:
            self._load_page(page_num, handle.file_desc, frame)
        except BufferPoolError:
            frame.pin_count = 0
            self._dispose_block(frame)
            raise
        return PageHandle(open=True, frame=frame)

    def allocate_page(self, file_id: int) -> PageHandle:
        """Allocate a page, reusing a free one or growing the file, and pin it."""
        handle = self._file_handle(file_id)

        if handle.allocated_pages < handle.page_count:
            for page_num in range(handle.page_count):
                if not handle.is_allocated(page_num):
                    handle.allocated_pages += 1
                    handle.set_allocated(page_num)
                    handle.hdr_frame.dirty = True
                    return self.get_this_page(file_id, page_num)

        page_num = handle.page_count
        if page_num >= MAX_PAGES_PER_FILE:
            raise BufferPoolError(
                f"no room for another page in {handle.file_name}", "NOMEM"
            )
        frame = self._allocate_block()

        handle.allocated_pages += 1
        handle.page_count += 1
        handle.set_allocated(page_num)
        handle.hdr_frame.dirty = True

        frame.dirty = False
        frame.file_desc = handle.file_desc
        frame.pin_count = 1
        frame.acc_time = _current_time()
        frame.page.clear(page_num)

        self._flush_block(frame)
        return PageHandle(open=True, frame=frame)

    def dispose_page(self, file_id: int, page_num: int) -> None:
        """Drop a page from the buffer and mark it free in the file."""
        handle = self._file_handle(file_id)
        self._check_page_num(page_num, handle)

        for index, frame in self._indexed_frames_of(handle):
            if frame.page.page_num == page_num:
                if frame.pin_count != 0:
                    raise BufferPoolError(
                        f"page {page_num} of {handle.file_name} is pinned",
                        "BUFFERPOOL_PAGE_PINNED",
                    )
                self._manager.allocated[index] = False

        handle.hdr_frame.dirty = True
        handle.allocated_pages -= 1
        handle.set_free(page_num)

    def force_page(self, file_id: int, page_num: int) -> None:
        """Write a buffered page back if dirty and release its frame.

        With ``page_num`` equal to -1 the first buffered page of the file is
        taken.
        """
        handle = self._file_handle(file_id)
        for index, frame in self._indexed_frames_of(handle):
            if frame.page.page_num != page_num and page_num != BP_INVALID_PAGE_NUM:
                continue
            if frame.pin_count != 0:
                raise BufferPoolError(
                    f"page {page_num} of {handle.file_name} is pinned",
                    "BUFFERPOOL_PAGE_PINNED",
                )
            if frame.dirty:
                self._flush_block(frame)
            self._manager.allocated[index] = False
            return

    def mark_dirty(self, page_handle: PageHandle) -> None:
        """Mark the page behind a handle as modified."""
        if page_handle.frame is None:
            raise BufferPoolError("page handle is closed", "BUFFERPOOL_CLOSED")
        page_handle.frame.dirty = True

    def unpin_page(self, page_handle: PageHandle) -> None:
        """Release a handle so its frame may be evicted."""
        if page_handle.frame is None:
            raise BufferPoolError("page handle is closed", "BUFFERPOOL_CLOSED")
        page_handle.open = False
        page_handle.frame.pin_count -= 1

    def get_page_count(self, file_id: int) -> int:
        """Return the number of pages the file holds, free ones included."""
        return self._file_handle(file_id).page_count

    def flush_all_pages(self, file_id: int) -> None:
        """Write all dirty pages of a file and release its unpinned frames."""
        self._force_all_pages(self._file_handle(file_id), release_pinned=False)

    def _file_handle(self, file_id: int) -> _FileHandle:
        if not 0 <= file_id < MAX_OPEN_FILE:
            raise BufferPoolError(
                f"invalid file id {file_id}", "BUFFERPOOL_ILLEGAL_FILE_ID"
            )
        handle = self._open_files[file_id]
        if handle is None:
            raise BufferPoolError(
                f"file id {file_id} is not open", "BUFFERPOOL_ILLEGAL_FILE_ID"
            )
        return handle

    def _check_page_num(self, page_num: int, handle: _FileHandle) -> None:
        if (
            page_num < 0
            or page_num >= handle.page_count
            or not handle.is_allocated(page_num)
        ):
            raise BufferPoolError(
                f"invalid page number {page_num} of {handle.file_name}",
                "BUFFERPOOL_INVALID_PAGE_NUM",
            )

    def _indexed_frames_of(self, handle: _FileHandle):
        manager = self._manager
        for index, frame in enumerate(manager.frames):
            if manager.allocated[index] and frame.file_desc == handle.file_desc:
                yield index, frame

    def _frames_of(self, handle: _FileHandle):
        return (frame for _, frame in self._indexed_frames_of(handle))

    def _force_all_pages(self, handle: _FileHandle, release_pinned: bool) -> None:
        for index, frame in list(self._indexed_frames_of(handle)):
            if frame.dirty:
                self._flush_block(frame)
            if release_pinned or frame.pin_count == 0:
                self._manager.allocated[index] = False

    def _flush_block(self, frame: Frame) -> None:
        offset = frame.page.page_num * BP_PAGE_SIZE
        try:
            os.lseek(frame.file_desc, offset, os.SEEK_SET)
        except OSError as exc:
            raise BufferPoolError(
                f"failed to seek to page {frame.page.page_num}", "IOERR_SEEK"
            ) from exc
        try:
            written = os.write(frame.file_desc, frame.page.to_bytes())
        except OSError as exc:
            raise BufferPoolError(
                f"failed to write page {frame.page.page_num}", "IOERR_WRITE"
            ) from exc
        if written != BP_PAGE_SIZE:
            raise BufferPoolError(
                f"failed to write page {frame.page.page_num}", "IOERR_WRITE"
            )
        frame.dirty = False

    def _allocate_block(self) -> Frame:
        manager = self._manager
        for index, used in enumerate(manager.allocated):
            if not used:
                manager.allocated[index] = True
                return manager.frames[index]

        candidates = [frame for frame in manager.frames if frame.pin_count == 0]
        if not candidates:
            raise BufferPoolError("all pages have been used and pinned", "NOMEM")
        victim = min(candidates, key=lambda frame: frame.acc_time)
        if victim.dirty:
            self._flush_block(victim)
        return victim

    def _dispose_block(self, frame: Frame) -> None:
        if frame.pin_count != 0:
            raise BufferPoolError(
                f"page {frame.page.page_num} is still pinned", "LOCKED_UNLOCK"
            )
        if frame.dirty:
            self._flush_block(frame)
        frame.dirty = False
        position = self._manager.frames.index(frame)
        self._manager.allocated[position] = False

    def _load_page(self, page_num: int, file_desc: int, frame: Frame) -> None:
        try:
            os.lseek(file_desc, page_num * BP_PAGE_SIZE, os.SEEK_SET)
        except OSError as exc:
            raise BufferPoolError(
                f"failed to seek to page {page_num}", "IOERR_SEEK"
            ) from exc
        try:
            raw = os.read(file_desc, BP_PAGE_SIZE)
        except OSError as exc:
            raise BufferPoolError(
                f"failed to read page {page_num}", "IOERR_READ"
            ) from exc
        if len(raw) != BP_PAGE_SIZE:
            raise BufferPoolError(f"failed to read page {page_num}", "IOERR_READ")
        frame.page.load(raw)


@functools.lru_cache(maxsize=None)
def global_disk_buffer_pool() -> DiskBufferPool:
    """Return the process-wide buffer pool."""
    return DiskBufferPool()