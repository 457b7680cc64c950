"""Statement structures handed from the SQL layer to storage, and server settings."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union

MAX_NUM = 20
MAX_REL_NAME = 20
MAX_ATTR_NAME = 20
MAX_ERROR_MESSAGE = 20
MAX_DATA = 50

CLIENT_ADDRESS = "CLIENT_ADDRESS"
MAX_CONNECTION_NUM = "MAX_CONNECTION_NUM"
MAX_CONNECTION_NUM_DEFAULT = 8192
PORT = "PORT"
PORT_DEFAULT = 16880
SOCKET_BUFFER_SIZE = 8192
SESSION_STAGE_NAME = "SessionStage"


class CompOp(enum.IntEnum):
    """Comparison operator of a condition."""

    EQUAL = 0
    LESS_EQUAL = 1
    NOT_EQUAL = 2
    LESS_THAN = 3
    GREAT_EQUAL = 4
    GREAT_THAN = 5
    NO_OP = 6

    @property
    def symbol(self) -> str | None:
        return _SYMBOLS.get(self)

    @classmethod
    def from_symbol(cls, symbol: str) -> CompOp:
        for op, text in _SYMBOLS.items():
            if text == symbol:
                return op
        raise ValueError(f"unknown comparison operator: {symbol!r}")


_SYMBOLS = {
    CompOp.EQUAL: "=",
    CompOp.LESS_EQUAL: "<=",
    CompOp.NOT_EQUAL: "<>",
    CompOp.LESS_THAN: "<",
    CompOp.GREAT_EQUAL: ">=",
    CompOp.GREAT_THAN: ">",
}


class AttrType(enum.IntEnum):
    CHARS = 0
    INTS = 1
    FLOATS = 2


class SqlFlag(enum.IntEnum):
    """Kind of a parsed statement."""

    ERROR = 0
    SELECT = 1
    INSERT = 2
    UPDATE = 3
    DELETE = 4
    CREATE_TABLE = 5
    DROP_TABLE = 6
    CREATE_INDEX = 7
    DROP_INDEX = 8
    HELP = 9
    EXIT = 10


def _check_count(what: str, items: list) -> None:
    if len(items) > MAX_NUM:
        raise ValueError(f"too many {what}: {len(items)} > {MAX_NUM}")


@dataclass(frozen=True)
class RelAttr:
    """An attribute, optionally qualified by its relation."""

    attr_name: str
    rel_name: str | None = None


@dataclass(frozen=True)
class Value:
    type: AttrType
    data: Any


Operand = Union[RelAttr, Value]


@dataclass(frozen=True)
class Condition:
    """A comparison whose sides are attributes or values."""

    left: Operand
    op: CompOp
    right: Operand

    @property
    def left_is_attr(self) -> bool:
        return isinstance(self.left, RelAttr)

    @property
    def right_is_attr(self) -> bool:
        return isinstance(self.right, RelAttr)


@dataclass
class Selects:
    attributes: list[RelAttr] = field(default_factory=list)
    relations: list[str] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_count("select attributes", self.attributes)
        _check_count("relations", self.relations)
        _check_count("conditions", self.conditions)


@dataclass
class Inserts:
    relation_name: str
    values: list[Value] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_count("values", self.values)


@dataclass
class Deletes:
    relation_name: str
    conditions: list[Condition] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_count("conditions", self.conditions)


@dataclass
class Updates:
    relation_name: str
    attribute_name: str
    value: Value
    conditions: list[Condition] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_count("conditions", self.conditions)


@dataclass(frozen=True)
class AttrInfo:
    name: str
    type: AttrType
    length: int


@dataclass
class CreateTable:
    relation_name: str
    attributes: list[AttrInfo] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_count("attributes", self.attributes)


@dataclass(frozen=True)
class DropTable:
    relation_name: str


@dataclass(frozen=True)
class CreateIndex:
    index_name: str
    relation_name: str
    attribute_name: str


@dataclass(frozen=True)
class DropIndex:
    index_name: str