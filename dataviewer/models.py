from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, model_serializer


class TreeResult(BaseModel):
    """Parsed JSON/XML document: objects, arrays and scalars."""

    kind: Literal["tree"] = "tree"
    value: Any = None

    @property
    def ok(self) -> bool:
        return True

    def payload(self) -> Any:
        return self.value


class TableResult(BaseModel):
    """Parsed CSV/spreadsheet: one header-keyed record per data row."""

    kind: Literal["table"] = "table"
    rows: List[Dict[str, str]] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True

    def payload(self) -> Any:
        return self.rows


class ParseError(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: Literal[True] = True
    message: str
    original_data_preview: Optional[str] = Field(
        default=None, alias="originalDataPreview", examples=["[1, 2,"]
    )

    @property
    def ok(self) -> bool:
        return False

    @model_serializer(mode="wrap")
    def _omit_missing_preview(self, handler):
        data = handler(self)
        if self.original_data_preview is None:
            data.pop("originalDataPreview", None)
            data.pop("original_data_preview", None)
        return data

    def payload(self) -> Any:
        return self.model_dump(by_alias=True)


ParseResult = Union[TreeResult, TableResult, ParseError]


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_type: str = Field(alias="fileType")
    view: Literal["tree", "table", "error"]
    parsed_data: Any = Field(alias="parsedData")


class HealthResponse(BaseModel):
    ok: bool = True
