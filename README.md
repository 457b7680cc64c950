# ministore

Storage-layer pieces for a small relational database engine, usable on their own:

- `ministore.buffer_pool`: a paged file format (4 KiB pages; page 0 is a header
  holding the page count, the number of allocated pages and an allocation bitmap)
  and `DiskBufferPool`, which caches pages in a fixed number of frames, pins them
  while in use and writes dirty pages back to disk. `BPManager` is a standalone
  set of frames with most-recently-used ordering.
- `ministore.lru_cache`: `LRUCache`, a bounded key/value cache that evicts the least
  recently used entry.
- `ministore.trx`: `Trx`, a simple transaction that records insert, update and delete
  operations per table and commits or rolls them back, with record visibility rules.
- `ministore.sql_defs`: data types describing parsed SQL statements (`Selects`,
  `Inserts`, `Updates`, `Deletes`, `CreateTable`, `DropTable`, `CreateIndex`,
  `DropIndex`, `Condition`, `RelAttr`, `Value`, `AttrInfo`), the enums `CompOp`,
  `AttrType` and `SqlFlag`, and server setting names and defaults such as
  `PORT_DEFAULT`.

## Installation

```
pip install .
```

## Buffer pool

```python
from ministore.buffer_pool import DiskBufferPool, BufferPoolError

pool = DiskBufferPool(buffer_size=50)
pool.create_file("data.bin")
file_id = pool.open_file("data.bin")

handle = pool.allocate_page(file_id)
handle.data[0:5] = b"hello"
pool.mark_dirty(handle)
pool.unpin_page(handle)

print(pool.get_page_count(file_id))   # 2: the header page and the new page
pool.close_file(file_id)
```

Other operations: `get_this_page(file_id, page_num)` pins an existing page and
returns a `PageHandle`; `dispose_page` marks a page free for reuse;
`force_page` writes one buffered page back and releases its frame (with
`page_num=-1`, the first buffered page of the file); `flush_all_pages` writes
every dirty page of a file. Failures raise `BufferPoolError`, whose `code`
attribute names the failure (for example `"BUFFERPOOL_INVALID_PAGE_NUM"`,
`"BUFFERPOOL_PAGE_PINNED"` or `"NOMEM"` when every frame is pinned). A
process-wide pool is available from `global_disk_buffer_pool()`.

## LRU cache

```python
from ministore.lru_cache import LRUCache

cache = LRUCache(2)
cache.put("a", 1)
cache.put("b", 2)
cache.get("a")          # "a" is now most recent
cache.put("c", 3)       # evicts "b"
cache.exists("b")       # False
len(cache)              # 2
```

`get` raises `KeyError` for a key that is not cached; `exists` and `in` do not
refresh an entry.

## Transactions

`Trx` tracks operations on records identified by a `Rid` and stamps each
`Record`'s data with the transaction id, with the top bit marking a deletion.
A table passed to it must have an integer `trx_field_offset` (where the
transaction field sits in the record data) and the methods `commit_insert`,
`commit_delete`, `commit_update`, `rollback_insert` and `rollback_delete`, each
taking `(trx, rid)`. `commit()` and `rollback()` call these hooks for every
recorded operation and then reset the transaction. An operation that is not
allowed (for example touching a record twice) raises `TrxError`; a failing hook
is reported as `TrxError` after the transaction has been reset.

## What this package does not do

It provides no SQL parser, no table or record manager, no B+ tree index and no
server or client: the statement structures in `ministore.sql_defs` are only data,
and `Trx` relies on a table object supplied by the caller.

## Running the tests

```
pip install .[test]
pytest
```