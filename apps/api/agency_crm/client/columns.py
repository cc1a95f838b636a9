from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

from agency_crm.client.i18n import pick

Label = Union[str, Mapping[str, str]]
CellRenderer = Callable[[Any, Mapping[str, Any]], Any]


@dataclass(frozen=True)
class TableColumn:
    """One grid column. ``render`` gets the cell value and the whole row."""

    key: str
    label: Label
    sortable: bool = True
    visible: bool = True
    width: int | None = None
    render: CellRenderer | None = None

    def localized_label(self, locale: str) -> str:
        if isinstance(self.label, str):
            return self.label
        return pick(self.label, locale) or self.key
