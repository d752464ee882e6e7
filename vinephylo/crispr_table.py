"""Tables of CRISPR edit states observed per cell and per target site."""

from __future__ import annotations

import math
from enum import Enum
from typing import Iterable, List, Optional, Sequence, TextIO

import numpy as np

__all__ = ["MAX_DISTANCE", "SILENT", "UNEDITED", "MutRatesType", "MutationTable"]

SILENT = -1
UNEDITED = 0
MAX_DISTANCE = 3.0


class MutRatesType(Enum):
    """How relative mutation rates are estimated."""

    UNIF = "unif"
    EMPIRICAL = "empirical"


def _normalized(counts: np.ndarray) -> np.ndarray:
    total = float(np.sum(counts))
    if total <= 0.0:
        raise ValueError("cannot normalise rates: no edited states observed")
    return counts / total


class MutationTable:
    """Edit state of each site in each cell.

    State 0 is the unedited state, -1 marks a silent (unobserved) site and
    positive values are distinct edits.
    """

    def __init__(self, sitenames: Iterable[str], cellnames: Iterable[str],
                 cellmuts: Iterable[Sequence[int]]) -> None:
        self.sitenames: List[str] = list(sitenames)
        self.cellnames: List[str] = list(cellnames)
        self.cellmuts: List[List[int]] = [list(row) for row in cellmuts]
        if len(self.cellnames) != len(self.cellmuts):
            raise ValueError("number of cell names does not match number of rows")
        for lineno, row in enumerate(self.cellmuts, start=1):
            if len(row) != self.nsites:
                raise ValueError(
                    f"row {lineno}: number of mutations does not match header")
        self.nstates = 0
        for row in self.cellmuts:
            for state in row:
                if state >= self.nstates:
                    self.nstates = state + 1
        self.sitewise_nstates: Optional[List[int]] = None

    @property
    def nsites(self) -> int:
        return len(self.sitenames)

    @property
    def ncells(self) -> int:
        return len(self.cellmuts)

    @classmethod
    def read(cls, stream: TextIO) -> "MutationTable":
        """Parse a whitespace-delimited table whose first row names the sites."""
        lines = iter(stream)
        header = next(lines, None)
        if header is None:
            raise ValueError("cannot read from file")
        sitenames = header.split()[1:]
        nsites = len(sitenames)
        cellnames: List[str] = []
        cellmuts: List[List[int]] = []
        for lineno, line in enumerate(lines, start=1):
            cols = line.split()
            if len(cols) != nsites + 1:
                raise ValueError(f"line {lineno} of input file: number of mutations "
                                 "does not match header")
            try:
                row = [int(tok) for tok in cols[1:]]
            except ValueError as exc:
                raise ValueError(f"line {lineno} of input file: bad state") from exc
            cellnames.append(cols[0])
            cellmuts.append(row)
        return cls(sitenames, cellnames, cellmuts)

    def copy(self) -> "MutationTable":
        """Independent copy of names, states and state count."""
        dup = MutationTable(self.sitenames, self.cellnames, self.cellmuts)
        dup.nstates = self.nstates
        return dup

    def _check_index(self, cell: int, site: int) -> None:
        if not (0 <= cell < self.ncells and 0 <= site < self.nsites):
            raise IndexError(f"cell {cell}, site {site} out of range")

    def get(self, cell: int, site: int) -> int:
        self._check_index(cell, site)
        return self.cellmuts[cell][site]

    def set(self, cell: int, site: int, val: int) -> None:
        self._check_index(cell, site)
        if val >= self.nstates:
            raise ValueError(f"state {val} out of range")
        self.cellmuts[cell][site] = val

    def write(self, stream: TextIO) -> None:
        """Write the table in the tab-delimited form that :meth:`read` accepts."""
        stream.write("cell" + "".join(f"\t{name}" for name in self.sitenames) + "\n")
        for name, row in zip(self.cellnames, self.cellmuts):
            stream.write(f"{name}\t" + "\t".join(str(v) for v in row) + "\n")

    def renumber_states(self) -> None:
        """Renumber edits densely from 1 in order of first appearance."""
        statemap = {}
        next_state = 1
        for row in self.cellmuts:
            for site, state in enumerate(row):
                if state in (SILENT, UNEDITED):
                    continue
                if state >= self.nstates or state < 0:
                    raise ValueError("state number out of range")
                if state not in statemap:
                    statemap[state] = next_state
                    next_state += 1
                row[site] = statemap[state]
        self.nstates = next_state

    def pairwise_distance(self, i: int, j: int) -> float:
        """Poisson-type distance between two cells, capped at MAX_DISTANCE."""
        compared = diff = 0
        for site in range(self.nsites):
            a, b = self.get(i, site), self.get(j, site)
            if a == SILENT or b == SILENT:
                continue
            compared += 1
            if a != b:
                diff += 1
        if compared == 0 or diff >= compared:
            return MAX_DISTANCE
        d = -math.log(1.0 - diff / compared)
        return MAX_DISTANCE if d > MAX_DISTANCE else d

    def distance_matrix(self) -> np.ndarray:
        """Upper-triangular matrix of pairwise cell distances."""
        n = self.ncells
        dist = np.zeros((n, n))
        for i in range(n):
            for j in range(i + 1, n):
                dist[i, j] = self.pairwise_distance(i, j)
        return dist

    def estimate_mutrates(self, rates_type: MutRatesType) -> np.ndarray:
        """Relative rates of each edit state over the whole table."""
        rates = np.zeros(self.nstates)
        if MutRatesType(rates_type) is MutRatesType.UNIF:
            if self.nstates > 1:
                rates[1:] = 1.0 / (self.nstates - 1.0)
            return rates
        for row in self.cellmuts:
            for state in row:
                if state > 0:
                    rates[state] += 1.0
        return _normalized(rates)

    def estimate_sitewise_mutrates(self, rates_type: MutRatesType) -> List[np.ndarray]:
        """Relative edit rates for each site; needs a table from :meth:`sitewise_table`."""
        if self.sitewise_nstates is None:
            raise ValueError("table has not been renumbered sitewise")
        kind = MutRatesType(rates_type)
        result = []
        for site, nstates in enumerate(self.sitewise_nstates):
            rates = np.zeros(nstates)
            if kind is MutRatesType.UNIF:
                if nstates > 1:
                    rates[1:] = 1.0 / (nstates - 1.0)
            else:
                for row in self.cellmuts:
                    if row[site] > 0:
                        rates[row[site]] += 1.0
                rates = _normalized(rates)
            result.append(rates)
        return result

    def sitewise_table(self) -> "MutationTable":
        """Copy with edits renumbered densely within each site."""
        table = self.copy()
        table.sitewise_nstates = []
        for site in range(self.nsites):
            statemap = {}
            count = 1
            for cell, row in enumerate(self.cellmuts):
                state = row[site]
                if state >= self.nstates:
                    raise ValueError("state number out of range")
                if state in (SILENT, UNEDITED):
                    newstate = state
                else:
                    if state not in statemap:
                        statemap[state] = count
                        count += 1
                    newstate = statemap[state]
                table.set(cell, site, newstate)
            table.sitewise_nstates.append(count)
        return table

    def __repr__(self) -> str:
        return (f"MutationTable(ncells={self.ncells}, nsites={self.nsites}, "
                f"nstates={self.nstates})")