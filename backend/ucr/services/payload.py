"""Typed rule payload: known sections plus an extension map for unknown ones."""

import copy
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ucr.services._helpers import JsonDict

Scalar = bool | int | float | str | None


class RuleException(BaseModel):
    """``{if: predicate-map, then: override-map}``."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    when: dict[str, Any] = Field(default_factory=dict, alias="if")
    then: dict[str, Any] = Field(default_factory=dict)


class RulePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str = ""
    definitions: dict[str, Scalar] = Field(default_factory=dict)
    exceptions: list[RuleException] = Field(default_factory=list)
    calendar_effects: dict[str, Any] | None = None
    notifications: dict[str, Any] | None = None
    extensions: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_extensions(cls, data: object) -> object:
        if not isinstance(data, Mapping):
            return data
        known: set[str] = set(cls.model_fields) - {"extensions"}
        extensions: dict[str, Any] = dict(data.get("extensions") or {})
        base: dict[str, Any] = {}
        for key, value in data.items():
            if key == "extensions":
                continue
            if key in known:
                base[key] = value
            else:
                extensions[key] = value
        base["extensions"] = extensions
        return base

    def to_document(self) -> JsonDict:
        """Serialize with extensions merged back to the top level."""
        doc: JsonDict = self.model_dump(by_alias=True, exclude_none=True, exclude={"extensions"})
        for key, value in self.extensions.items():
            doc.setdefault(key, copy.deepcopy(value))
        return doc


def parse_payload(raw: Mapping[str, object]) -> tuple[RulePayload | None, list[str]]:
    """Parse a raw payload mapping; return the model or readable shape errors."""
    try:
        return RulePayload.model_validate(raw), []
    except ValidationError as exc:
        errors: list[str] = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            errors.append(f"rule_payload.{loc}: {err['msg']}" if loc else f"rule_payload: {err['msg']}")
        return None, errors


def normalize_payload(raw: Mapping[str, object]) -> JsonDict:
    """Round-trip through the model when the payload is well formed, else keep a plain copy."""
    payload, _ = parse_payload(raw)
    if payload is None:
        return {str(k): v for k, v in copy.deepcopy(dict(raw)).items()}
    return payload.to_document()
