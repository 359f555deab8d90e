from __future__ import annotations

from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

from src.config import SHORTEN_DIVISOR
from src.face.errors import UnknownIdentityError
from src.utils.log import get_logger

logger = get_logger(__name__)

_UINT32_MASK = 0xFFFFFFFF


def _to_int32(value: int) -> int:
    value &= _UINT32_MASK
    return value - 0x100000000 if value & 0x80000000 else value


def generate_hash(text: str) -> int:
    """Polynomial rolling hash (h = 31 * h + c) with wrapping 32-bit signed arithmetic.

    Characters are consumed as UTF-16 code units so ids cached by other
    implementations of the same hash stay valid.
    """
    h = 0
    data = str(text).encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (31 * h + unit) & _UINT32_MASK
    return _to_int32(h)


def shorten(face_id: int) -> int:
    """Drop the two least significant decimal digits (truncates toward zero)."""
    face_id = int(face_id)
    q = abs(face_id) // SHORTEN_DIVISOR
    return -q if face_id < 0 else q


class IdentityTable(Mapping[int, str]):
    """Read-only shortened id -> label lookup.

    Ids that shorten to the same key collapse into one entry; the record
    enrolled last wins.
    """

    def __init__(self, entries: Optional[Mapping[int, str]] = None):
        self._lookup: Dict[int, str] = {int(k): str(v) for k, v in (entries or {}).items()}

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[int, str]]) -> "IdentityTable":
        lookup: Dict[int, str] = {}
        for face_id, label in pairs:
            key = shorten(face_id)
            previous = lookup.get(key)
            if previous is not None and previous != label:
                logger.warning(f"Shortened id {key} collision: '{previous}' replaced by '{label}' (id={face_id})")
            lookup[key] = str(label)
        return cls(lookup)

    def __getitem__(self, key: int) -> str:
        return self._lookup[int(key)]

    def __iter__(self) -> Iterator[int]:
        return iter(self._lookup)

    def __len__(self) -> int:
        return len(self._lookup)

    def resolve(self, class_key: int) -> str:
        try:
            return self._lookup[int(class_key)]
        except KeyError:
            raise UnknownIdentityError(class_key) from None

    def to_dict(self) -> Dict[int, str]:
        return dict(self._lookup)
