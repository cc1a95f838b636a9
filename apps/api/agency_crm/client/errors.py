from __future__ import annotations


class TableClientError(Exception):
    pass


class TableLoadError(TableClientError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (HTTP {self.status_code})"


class SavedViewNotFound(TableClientError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Saved view not found: {name}")
        self.name = name


class TableFeatureDisabled(TableClientError):
    def __init__(self, feature: str) -> None:
        super().__init__(f"Table feature is disabled: {feature}")
        self.feature = feature
