"""Data model shared by the transport, the mapper and the device sessions."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Union

Scalar = Union[int, float, str]


class DataType(str, Enum):
    """Homie datatypes produced by the bridge."""

    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"


class DeviceState(str, Enum):
    """Lifecycle of a single polled bus address."""

    CREATED = "created"
    FIRST_POLL_PENDING = "first_poll_pending"
    ACTIVE = "active"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


@dataclass
class DataRecord:
    """One measurement slot of a reading, identified by a stable id."""

    id: str
    value: Scalar
    unit_text: str
    function: Optional[str] = None
    storage_number: Optional[int] = None


@dataclass
class Reading:
    """Full result of one poll for one bus address."""

    address: str
    slave_information: Dict[str, Scalar] = field(default_factory=dict)
    data_records: List[DataRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "SlaveInformation": dict(self.slave_information),
            "DataRecord": [
                {"id": r.id, "Value": r.value, "Unit": r.unit_text}
                for r in self.data_records
            ],
        }


@dataclass(frozen=True)
class ParsedUnit:
    display_name: str
    annotation: Optional[str] = None


@dataclass(frozen=True)
class ScaledUnit:
    normalized_unit: str
    scale_factor: Optional[float] = None


@dataclass(frozen=True)
class PropertyDescriptor:
    """Everything needed to announce a Homie property; fixed at creation."""

    key: str
    display_name: str
    data_type: DataType
    unit: Optional[str] = None


class MappedValue(NamedTuple):
    key: str
    descriptor: Optional[PropertyDescriptor]
    value: Scalar


def is_whole_number(value: Any) -> bool:
    """Mirror of an "is integer" check on a JSON number: ints and integral floats."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    return False


def is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
