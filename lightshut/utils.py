"""Helpers for confidence and cell bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence


@dataclass(frozen=True)
class Position:
    """Position of a cell in the data matrix."""

    row: int
    col: int


@dataclass(frozen=True)
class Cell:
    """A cell's position and its content."""

    position: Position
    content: bytes = bytes(80)


def calculate_confidence(count: int) -> float:
    """Confidence, in percent, given the number of verified cells."""
    if count < 0:
        raise ValueError(f"cell count must not be negative: {count}")
    return 100.0 * (1.0 - 1.0 / 2**count)


def can_reconstruct(rows: int, columns: Iterable[int], cells: Sequence[Cell]) -> bool:
    """Whether every given column has at least ``rows`` cells."""
    return all(
        sum(1 for cell in cells if cell.position.col == col) >= rows for col in columns
    )


def diff_positions(positions: Iterable[Position], cells: Iterable[Cell]) -> list[Position]:
    """Positions, in order, that none of the cells occupy."""
    taken = {cell.position for cell in cells}
    return [position for position in positions if position not in taken]