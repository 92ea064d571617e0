# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Mango ``_find`` query model."""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class FindQuery(BaseModel):
    """Body of a ``POST /{db}/_find`` request.

    Example:
        >>> query = FindQuery(selector={"type": "person"}, limit=10, sort=[{"name": "asc"}])
        >>> everything = FindQuery.find_all(limit=100)
    """

    model_config = ConfigDict(extra="forbid")

    selector: dict[str, Any]
    limit: Optional[int] = None
    skip: Optional[int] = None
    sort: list[Union[str, dict[str, str]]] = Field(default_factory=list)
    fields: Optional[list[str]] = None
    use_index: Optional[Union[str, list[str]]] = None
    r: Optional[int] = None
    bookmark: Optional[str] = None
    update: Optional[bool] = None
    stable: Optional[bool] = None
    execution_stats: Optional[bool] = None

    @classmethod
    def find_all(cls, **kwargs: Any) -> "FindQuery":
        """Query matching every document."""
        return cls(selector={"_id": {"$ne": None}}, **kwargs)

    def to_body(self) -> dict[str, Any]:
        body = {"selector": self.selector}
        body.update(self.model_dump(exclude_none=True, exclude={"selector"}))
        if not body.get("sort"):
            body.pop("sort", None)
        return body


class FindResult(BaseModel):
    """Envelope of a ``_find`` response."""

    model_config = ConfigDict(extra="allow")

    docs: Optional[list[Any]] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    bookmark: Optional[str] = None
