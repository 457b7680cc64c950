"""A simple transaction that records row operations and commits or rolls them back.

There is no concurrency control: a transaction only tracks its own operations
and stamps records with its id so that visibility can be decided.
"""

from __future__ import annotations

import enum
import itertools
import logging
import struct
import threading
from dataclasses import dataclass, field
from typing import Any

from ministore.sql_defs import AttrType

logger = logging.getLogger(__name__)

DELETED_FLAG_BIT_MASK = 0x80000000
TRX_ID_BIT_MASK = 0x7FFFFFFF
_TRX_FIELD_FORMAT = "<I"

_id_counter = itertools.count(1)
_id_lock = threading.Lock()


class TrxError(Exception):
    """Raised when a transaction operation is not allowed or fails."""


@dataclass(frozen=True)
class Rid:
    """Record identifier: a page number and a slot inside that page."""

    page_num: int
    slot_num: int


@dataclass
class Record:
    """A stored row: its identifier and its raw bytes."""

    rid: Rid
    data: bytearray = field(default_factory=bytearray)


class OperationType(enum.Enum):
    INSERT = 0
    UPDATE = 1
    DELETE = 2
    UNDEFINED = 3


@dataclass(frozen=True)
class Operation:
    """An operation a transaction performed on one record."""

    type: OperationType
    page_num: int
    slot_num: int

    @property
    def rid(self) -> Rid:
        return Rid(self.page_num, self.slot_num)


class Trx:
    """Tracks inserts, updates and deletes per table until commit or rollback.

    A table passed in must have an integer ``trx_field_offset`` (where the
    transaction field sits in a record's data) and the methods
    ``commit_insert``, ``commit_delete``, ``commit_update``,
    ``rollback_insert`` and ``rollback_delete``, each taking ``(trx, rid)``
    and raising on failure.
    """

    FIELD_NAME = "__trx"

    def __init__(self) -> None:
        self.trx_id = 0
        self._operations: dict[int, tuple[Any, dict[Rid, Operation]]] = {}

    @staticmethod
    def default_trx_id() -> int:
        return 0

    @staticmethod
    def next_trx_id() -> int:
        """Return a fresh, process-wide transaction id."""
        with _id_lock:
            return next(_id_counter)

    @staticmethod
    def trx_field_name() -> str:
        return Trx.FIELD_NAME

    @staticmethod
    def trx_field_type() -> AttrType:
        return AttrType.INTS

    @staticmethod
    def trx_field_len() -> int:
        return struct.calcsize(_TRX_FIELD_FORMAT)

    def insert_record(self, table: Any, record: Record) -> None:
        if self._find_operation(table, record.rid) is not None:
            raise TrxError(f"record {record.rid} already has an operation")
        self._start_if_not_started()
        self._insert_operation(table, OperationType.INSERT, record.rid)

    def delete_record(self, table: Any, record: Record) -> None:
        self._start_if_not_started()
        old = self._find_operation(table, record.rid)
        if old is not None:
            if old.type is OperationType.INSERT:
                self._delete_operation(table, record.rid)
                return
            raise TrxError(f"record {record.rid} already has an operation")
        self._set_record_trx_id(table, record, self.trx_id, deleted=True)
        self._insert_operation(table, OperationType.DELETE, record.rid)

    def update_record(self, table: Any, record: Record) -> None:
        self._start_if_not_started()
        if self._find_operation(table, record.rid) is not None:
            raise TrxError(f"record {record.rid} already has an operation")
        self._set_record_trx_id(table, record, self.trx_id, deleted=True)
        self._insert_operation(table, OperationType.UPDATE, record.rid)

    def commit(self) -> None:
        """Apply every recorded operation and end the transaction.

        All operations are attempted; if the last one fails, ``TrxError``
        is raised after the transaction has been reset.
        """
        actions = {
            OperationType.INSERT: "commit_insert",
            OperationType.DELETE: "commit_delete",
            OperationType.UPDATE: "commit_update",
        }
        self._finish(actions, "commit")

    def rollback(self) -> None:
        """Undo every recorded operation and end the transaction."""
        actions = {
            OperationType.INSERT: "rollback_insert",
            OperationType.DELETE: "rollback_delete",
        }
        self._finish(actions, "rollback")

    def commit_insert(self, table: Any, record: Record) -> None:
        self._set_record_trx_id(table, record, 0, deleted=False)

    def rollback_delete(self, table: Any, record: Record) -> None:
        self._set_record_trx_id(table, record, 0, deleted=False)

    def is_visible(self, table: Any, record: Record) -> bool:
        record_trx_id, deleted = self._get_record_trx_id(table, record)
        if record_trx_id == 0 or record_trx_id == self.trx_id:
            return not deleted
        # An uncommitted record of another transaction: only an
        # uncommitted delete is still visible.
        return deleted

    def init_trx_info(self, table: Any, record: Record) -> None:
        self._set_record_trx_id(table, record, self.trx_id, deleted=False)

    def _finish(self, actions: dict[OperationType, str], verb: str) -> None:
        last_error: Exception | None = None
        for table, operations in list(self._operations.values()):
            for operation in list(operations.values()):
                method = actions.get(operation.type)
                if method is None:
                    logger.error(
                        "Unknown operation on %s: %s", verb, operation.type.name
                    )
                    continue
                try:
                    getattr(table, method)(self, operation.rid)
                    last_error = None
                except Exception as exc:  # noqa: BLE001 - table failures are reported
                    logger.error(
                        "Failed to %s %s operation. rid=%d.%d: %s",
                        verb,
                        operation.type.name.lower(),
                        operation.page_num,
                        operation.slot_num,
                        exc,
                    )
                    last_error = exc
        self._operations.clear()
        self.trx_id = 0
        if last_error is not None:
            raise TrxError(f"failed to {verb} transaction") from last_error

    def _set_record_trx_id(
        self, table: Any, record: Record, trx_id: int, deleted: bool
    ) -> None:
        value = trx_id & 0xFFFFFFFF
        if deleted:
            value |= DELETED_FLAG_BIT_MASK
        struct.pack_into(_TRX_FIELD_FORMAT, record.data, table.trx_field_offset, value)

    @staticmethod
    def _get_record_trx_id(table: Any, record: Record) -> tuple[int, bool]:
        (raw,) = struct.unpack_from(
            _TRX_FIELD_FORMAT, record.data, table.trx_field_offset
        )
        return raw & TRX_ID_BIT_MASK, bool(raw & DELETED_FLAG_BIT_MASK)

    def _find_operation(self, table: Any, rid: Rid) -> Operation | None:
        entry = self._operations.get(id(table))
        if entry is None:
            return None
        return entry[1].get(rid)

    def _insert_operation(self, table: Any, op_type: OperationType, rid: Rid) -> None:
        _, operations = self._operations.setdefault(id(table), (table, {}))
        operations.setdefault(rid, Operation(op_type, rid.page_num, rid.slot_num))

    def _delete_operation(self, table: Any, rid: Rid) -> None:
        entry = self._operations.get(id(table))
        if entry is not None:
            entry[1].pop(rid, None)

    def _start_if_not_started(self) -> None:
        if self.trx_id == 0:
            self.trx_id = self.next_trx_id()