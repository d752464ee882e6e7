"""Fixed-width bit sets and a hash map keyed by them."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, List, Optional

_MASK64 = (1 << 64) - 1
_FNV_OFFSET = 1469598103934665603
_FNV_PRIME = 1099511628211


class BitSet:
    """A set of bit indices in the range [0, nbits)."""

    __slots__ = ("nbits", "_bits")

    def __init__(self, nbits: int) -> None:
        if nbits <= 0:
            raise ValueError("nbits must be positive")
        self.nbits = nbits
        self._bits = 0

    @property
    def nwords(self) -> int:
        return (self.nbits + 63) >> 6

    def copy(self) -> "BitSet":
        """Return an independent copy."""
        other = BitSet(self.nbits)
        other._bits = self._bits
        return other

    def clear(self) -> None:
        """Reset every bit to zero."""
        self._bits = 0

    def set_bit(self, idx: int) -> None:
        if not 0 <= idx < self.nbits:
            raise IndexError(f"bit index {idx} out of range for {self.nbits} bits")
        self._bits |= 1 << idx

    def set_bits(self, idxs: Iterable[int]) -> None:
        for idx in idxs:
            self.set_bit(idx)

    def flip(self) -> None:
        """Complement every bit in place."""
        self._bits = ~self._bits & ((1 << self.nbits) - 1)

    def to_indices(self) -> List[int]:
        """Indices of set bits in ascending order."""
        return list(self)

    def __iter__(self) -> Iterator[int]:
        bits = self._bits
        while bits:
            low = bits & -bits
            yield low.bit_length() - 1
            bits ^= low

    def __contains__(self, idx: object) -> bool:
        return isinstance(idx, int) and 0 <= idx < self.nbits and bool(self._bits >> idx & 1)

    def hash64(self) -> int:
        """FNV-1a hash over the little-endian 64-bit words of the set."""
        h = _FNV_OFFSET
        for byte in self._bits.to_bytes(self.nwords * 8, "little"):
            h ^= byte
            h = (h * _FNV_PRIME) & _MASK64
        return h

    def _check_same_width(self, other: "BitSet") -> None:
        if self.nbits != other.nbits:
            raise ValueError("bit sets have different widths")

    def __or__(self, other: "BitSet") -> "BitSet":
        if not isinstance(other, BitSet):
            return NotImplemented
        self._check_same_width(other)
        result = BitSet(self.nbits)
        result._bits = self._bits | other._bits
        return result

    def __and__(self, other: "BitSet") -> "BitSet":
        if not isinstance(other, BitSet):
            return NotImplemented
        self._check_same_width(other)
        result = BitSet(self.nbits)
        result._bits = self._bits & other._bits
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BitSet):
            return NotImplemented
        return self.nbits == other.nbits and self._bits == other._bits

    def __hash__(self) -> int:
        return self.hash64()

    def __repr__(self) -> str:
        return f"BitSet({self.nbits}, {self.to_indices()})"


class _Entry:
    __slots__ = ("h", "key", "value")

    def __init__(self, h: int, key: BitSet, value: Any) -> None:
        self.h = h
        self.key = key
        self.value = value


def _round_up_pow2(x: int) -> int:
    p = 1
    while p < x:
        p <<= 1
    return p


class BitSetMap:
    """Open-addressing hash map from bit sets to arbitrary values."""

    def __init__(self, capacity: int = 16) -> None:
        self._slots: List[Optional[_Entry]] = [None] * _round_up_pow2(max(capacity, 16))
        self._used = 0

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def _probe(self, h: int, key: BitSet) -> int:
        mask = len(self._slots) - 1
        j = h & mask
        while (entry := self._slots[j]) is not None:
            if entry.h == h and entry.key == key:
                return j
            j = (j + 1) & mask
        return j

    def _resize(self, new_cap: int) -> None:
        old = self._slots
        self._slots = [None] * _round_up_pow2(new_cap)
        mask = len(self._slots) - 1
        for entry in old:
            if entry is None:
                continue
            j = entry.h & mask
            while self._slots[j] is not None:
                j = (j + 1) & mask
            self._slots[j] = entry

    def get(self, key: BitSet) -> Any:
        """Return the value stored for key, or None."""
        entry = self._slots[self._probe(key.hash64(), key)]
        return None if entry is None else entry.value

    def put(self, key: BitSet, value: Any) -> bool:
        """Store value for key; True if a new key was inserted, False if replaced."""
        if (self._used + 1) * 10 > len(self._slots) * 7:
            self._resize(len(self._slots) << 1)
        h = key.hash64()
        j = self._probe(h, key)
        entry = self._slots[j]
        if entry is not None:
            entry.value = value
            return False
        self._slots[j] = _Entry(h, key.copy(), value)
        self._used += 1
        return True

    def __contains__(self, key: BitSet) -> bool:
        return self._slots[self._probe(key.hash64(), key)] is not None

    def __iter__(self) -> Iterator[BitSet]:
        return (entry.key for entry in self._slots if entry is not None)

    def __len__(self) -> int:
        return self._used