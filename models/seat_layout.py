# models/seat_layout.py
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, Field

from config.settings import settings


class SeatLayout(BaseModel):
    """Rows x column labels. Seat "7C" is row 7, column C; rows start at 1."""
    rows: int = Field(..., ge=0)
    columns: List[str]

    class Config:
        frozen = True

    @classmethod
    def for_bus(cls, bus) -> "SeatLayout":
        rows = bus.seat_rows if bus.seat_rows is not None else settings.DEFAULT_SEAT_ROWS
        columns = bus.seat_columns if bus.seat_columns else settings.default_seat_columns
        return cls(rows=rows, columns=list(columns))

    def labels(self) -> List[str]:
        """All addressable labels in row-major order."""
        return [f"{row}{col}" for row in range(1, self.rows + 1) for col in self.columns]

    def label_set(self) -> FrozenSet[str]:
        return frozenset(self.labels())

    def contains(self, seat_label: Optional[str]) -> bool:
        return bool(seat_label) and seat_label in self.label_set()
