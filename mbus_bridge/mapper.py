"""Map raw M-Bus readings onto Homie property descriptors and values."""

import logging
from typing import Dict, Iterable, List, Mapping

from .models import (
    DataRecord,
    DataType,
    MappedValue,
    PropertyDescriptor,
    Scalar,
    is_numeric,
    is_whole_number,
)
from .units import parse_property_unit, parse_scaled_unit

logger = logging.getLogger(__name__)

INFORMATION_PREFIX = "information/"
DATA_RECORD_PREFIX = "datarecord/id-"


def information_key(name: str) -> str:
    return f"{INFORMATION_PREFIX}{name}"


def data_record_key(record_id: str) -> str:
    return f"{DATA_RECORD_PREFIX}{record_id}"


def _whole_or_string(value: Scalar) -> DataType:
    return DataType.INTEGER if is_whole_number(value) else DataType.STRING


class ScaleFactorCache:
    """
    Scale factors per data record id of one device.

    Filled on the device's first poll and read on every later poll. A factor
    never changes once recorded: the unit of a record id is assumed constant
    for the lifetime of the meter.
    """

    def __init__(self):
        self._factors: Dict[str, float] = {}

    def record(self, record_id: str, factor: float) -> float:
        """Store ``factor`` for ``record_id`` unless one is already known; return the effective factor."""
        current = self._factors.get(record_id)
        if current is None:
            self._factors[record_id] = factor
            return factor
        if current != factor:
            logger.warning(
                f"Ignoring scale factor {factor} for record {record_id}, keeping {current}"
            )
        return current

    def get(self, record_id: str) -> float | None:
        return self._factors.get(record_id)

    def apply(self, record_id: str, value: Scalar) -> Scalar:
        factor = self._factors.get(record_id)
        if factor is None or not is_numeric(value):
            return value
        return factor * value

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._factors

    def __len__(self) -> int:
        return len(self._factors)


def map_slave_information(info: Mapping[str, Scalar]) -> List[MappedValue]:
    """Turn SlaveInformation fields into ``information/<name>`` properties."""
    mapped = []
    for name, value in info.items():
        descriptor = PropertyDescriptor(
            key=information_key(name),
            display_name=name,
            data_type=_whole_or_string(value),
        )
        mapped.append(MappedValue(descriptor.key, descriptor, value))
    return mapped


def map_data_records(
    records: Iterable[DataRecord],
    cache: ScaleFactorCache,
    is_first_poll: bool,
) -> List[MappedValue]:
    """
    Turn data records into ``datarecord/id-<id>`` properties.

    Descriptors are only produced on the first poll, when the properties get
    created. Later polls yield ``(key, None, value)`` and rely on the factors
    recorded in ``cache`` during the first poll.
    """
    mapped = []
    for record in records:
        key = data_record_key(record.id)
        parsed = parse_property_unit(record.unit_text)
        unit = None
        data_type = _whole_or_string(record.value)

        if parsed.annotation:
            scaled = parse_scaled_unit(parsed.annotation)
            unit = scaled.normalized_unit
            if scaled.scale_factor is not None:
                cache.record(record.id, scaled.scale_factor)
                data_type = DataType.FLOAT

        descriptor = None
        if is_first_poll:
            descriptor = PropertyDescriptor(
                key=key,
                display_name=parsed.display_name or record.unit_text,
                data_type=data_type,
                unit=unit,
            )
        mapped.append(MappedValue(key, descriptor, cache.apply(record.id, record.value)))
    return mapped
