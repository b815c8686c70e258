"""Request/response building blocks shared across routers."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ActorBody(CamelModel):
    """Body of a mutation; ``actor`` is written to the audit log."""

    actor: str = Field("system", min_length=1, max_length=128)


class ErrorResponse(BaseModel):
    detail: str
    type: str
    errors: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
