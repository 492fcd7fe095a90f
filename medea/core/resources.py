"""
Resource requirement calculation for workflow submissions.

A submission carries its Spark-style sizing as a flat list of "key=value"
strings inside submitOptions.parameters. This module turns that list into the
total CPU cores and RAM gigabytes the workflow will claim from a cluster's
namespace quota:

    cpu = executor_cores_limit * executor_num + driver_cores_limit
    ram = executor_memory_limit * executor_num + driver_memory_limit

Parsing policy:
- Entries that do not split into exactly one key and one value on "=" are
  dropped. Later occurrences of a key overwrite earlier ones.
- Count and core fields default to 0 when absent.
- Numbers are plain decimals. Whitespace, digit separators, "inf" and "nan"
  are not numbers.
- Memory fields must carry the gigabyte marker "g" (e.g. "6g", "0.25g").
  A memory value without it is rejected, never coerced.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable

from medea.errors import ValidationError
from medea.utils.logging import get_logger

log = get_logger("core.resources")

GIGABYTE_MARKER = "g"

EXECUTOR_NUM = "executor_num"
DRIVER_CORES = "driver_cores_limit"
EXECUTOR_CORES = "executor_cores_limit"
DRIVER_MEMORY = "driver_memory_limit"
EXECUTOR_MEMORY = "executor_memory_limit"

# Plain decimal, optionally signed, with an optional exponent
DECIMAL = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


@dataclass(frozen=True)
class ResourceRequirement:
    """Total resources a submission needs: CPU cores and RAM in gigabytes."""

    cpu: float = 0.0
    ram: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"cpu": self.cpu, "ram": self.ram}


def parse_parameters(params: Iterable[str]) -> Dict[str, str]:
    """
    Build a key/value mapping from raw "key=value" entries.

    :param params: Parameter strings in submission order.
    :return: Mapping where the last occurrence of a key wins.
    """
    values: Dict[str, str] = {}
    for entry in params:
        parts = entry.split("=")
        if len(parts) != 2:
            log.debug(f"Dropping malformed parameter '{entry}'")
            continue
        values[parts[0]] = parts[1]
    return values


def _number(values: Dict[str, str], key: str) -> float:
    raw = values.get(key)
    if raw is None:
        return 0.0
    if not DECIMAL.fullmatch(raw):
        log.warning(f"Parameter {key}={raw!r} is not a number, counting it as 0")
        return 0.0
    return float(raw)


def _memory(values: Dict[str, str], key: str) -> float:
    raw = values.get(key)
    if raw is None:
        return 0.0
    if GIGABYTE_MARKER not in raw:
        raise ValidationError(
            f"memory param {key} must contain '{GIGABYTE_MARKER}' (gigabytes), got '{raw}'"
        )
    amount = raw.replace(GIGABYTE_MARKER, "")
    if not DECIMAL.fullmatch(amount):
        raise ValidationError(f"memory param {key} is not a gigabyte amount: '{raw}'")
    return float(amount)


def calculate_resources(params: Iterable[str]) -> ResourceRequirement:
    """
    Compute the resource requirement of a submission.

    :param params: submitOptions.parameters of the submission.
    :return: The total CPU cores and RAM gigabytes requested.
    :raises ValidationError: If a memory parameter lacks the gigabyte marker
                             or is not a number once the marker is removed.
    """
    values = parse_parameters(params)

    executor_num = _number(values, EXECUTOR_NUM)
    driver_cores = _number(values, DRIVER_CORES)
    executor_cores = _number(values, EXECUTOR_CORES)

    driver_memory = _memory(values, DRIVER_MEMORY)
    executor_memory = _memory(values, EXECUTOR_MEMORY)

    return ResourceRequirement(
        cpu=executor_cores * executor_num + driver_cores,
        ram=executor_memory * executor_num + driver_memory,
    )
