"""
Fixed-precision 6-DOF pose codec.

Every component is quantised to exactly five fractional digits with
round-half-even. Floats enter through their shortest ``repr`` so the same
float always maps to the same decimal, and quantising an already quantised
value returns it unchanged.

Wire format is compact ASCII JSON with decimal strings::

    {"x":"1.23457","y":"0.00000","z":"0.00000","rx":"0.12346","ry":"0.00000","rz":"0.00000"}
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from decimal import Context, Decimal, DivisionByZero, InvalidOperation, ROUND_HALF_EVEN
from typing import Any, Mapping, Sequence, Tuple, Union

from presence.core.exceptions import RoundingFault

FIELDS = ("x", "y", "z", "rx", "ry", "rz")
SCALE = 5
# Enough digits for the largest finite double plus the fractional scale
PRECISION = 400

_QUANTUM = Decimal(1).scaleb(-SCALE)
_WIRE_VALUE = re.compile(r"^-?\d+\.\d{%d}$" % SCALE)

Number = Union[float, int, Decimal]


def _rounding_context() -> Context:
    return Context(prec=PRECISION, rounding=ROUND_HALF_EVEN, traps=[DivisionByZero, InvalidOperation])


def round_component(value: Number) -> Decimal:
    """Round one pose component to five fractional digits (half-even).

    Raises:
        RoundingFault: the value is not finite or the decimal context trapped
            a division by zero or invalid operation.
    """
    if isinstance(value, Decimal):
        decimal_value = value
    else:
        decimal_value = Decimal(repr(float(value)))

    if not decimal_value.is_finite():
        raise RoundingFault("Pose component is not finite", {"value": str(decimal_value)})

    try:
        rounded = decimal_value.quantize(_QUANTUM, context=_rounding_context())
    except (DivisionByZero, InvalidOperation) as e:
        raise RoundingFault("Pose component could not be rounded exactly", {
            "value": str(decimal_value),
            "signal": type(e).__name__
        }) from e

    # -0.00000 and 0.00000 are the same sample
    if rounded.is_zero():
        rounded = rounded.copy_abs()
    return rounded


def quaternion_to_euler(w: float, x: float, y: float, z: float) -> Tuple[float, float, float]:
    """Convert a unit quaternion to (roll, pitch, yaw) radians."""
    t0 = 2.0 * (w * x + y * z)
    t1 = 1.0 - 2.0 * (x * x + y * y)
    roll = math.atan2(t0, t1)

    t2 = 2.0 * (w * y - z * x)
    t2 = max(-1.0, min(1.0, t2))
    pitch = math.asin(t2)

    t3 = 2.0 * (w * z + x * y)
    t4 = 1.0 - 2.0 * (y * y + z * z)
    yaw = math.atan2(t3, t4)

    return roll, pitch, yaw


@dataclass(frozen=True)
class RawPose:
    """Unrounded world-space pose as reported by the renderer."""

    x: float
    y: float
    z: float
    rx: float
    ry: float
    rz: float

    @classmethod
    def from_transform(cls, position: Sequence[float], quaternion: Sequence[float]) -> "RawPose":
        """Build from a position ``[x, y, z]`` and a quaternion ``[w, x, y, z]``."""
        px, py, pz = position
        rx, ry, rz = quaternion_to_euler(*quaternion)
        return cls(px, py, pz, rx, ry, rz)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RawPose":
        missing = [name for name in FIELDS if name not in data]
        if missing:
            raise ValueError(f"Pose is missing fields: {', '.join(missing)}")
        return cls(*(float(data[name]) for name in FIELDS))


@dataclass(frozen=True)
class PoseSample:
    """A pose with every component rounded to five fractional digits."""

    x: Decimal
    y: Decimal
    z: Decimal
    rx: Decimal
    ry: Decimal
    rz: Decimal

    def to_dict(self) -> dict:
        return {name: format(getattr(self, name), "f") for name in FIELDS}


def encode(raw: Union[RawPose, Mapping[str, Any]]) -> PoseSample:
    """Round a raw pose into a ``PoseSample``.

    Raises:
        RoundingFault: any component failed the rounding guard. The caller
            drops the sample; the session keeps going.
    """
    if not isinstance(raw, RawPose):
        raw = RawPose.from_mapping(raw)
    return PoseSample(*(round_component(getattr(raw, name)) for name in FIELDS))


def serialize(sample: PoseSample) -> bytes:
    """Encode a sample as compact ASCII JSON."""
    return json.dumps(sample.to_dict(), separators=(",", ":")).encode("ascii")


def parse(data: Union[bytes, str]) -> PoseSample:
    """Decode a serialized sample. Strict: six fields, five fractional digits each."""
    if isinstance(data, bytes):
        data = data.decode("ascii")

    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise ValueError("Pose payload must be a JSON object")

    values = []
    for name in FIELDS:
        value = payload.get(name)
        if not isinstance(value, str) or not _WIRE_VALUE.match(value):
            raise ValueError(f"Pose field {name} is not a {SCALE}-digit decimal string: {value!r}")
        values.append(Decimal(value))
    return PoseSample(*values)
