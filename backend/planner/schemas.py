"""Pydantic request/response schemas used by the API.

Request bodies are validated with field descriptors built by the small
factories below (`min_text`, `required_text`, `identifier`). Each
resource has a single input schema that is shared by its create and
update endpoints so both paths enforce the same constraints.

All schemas speak camelCase on the wire and snake_case in Python.
"""

import uuid
from datetime import datetime
from typing import Annotated, List, Optional
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def min_text(min_len: int, message: str):
    """Return a `str` type that rejects values shorter than `min_len`."""
    def _check(value: str) -> str:
        if len(value) < min_len:
            raise ValueError(message)
        return value
    return Annotated[str, AfterValidator(_check)]


def required_text(message: str):
    """Return a `str` type that must not be empty."""
    return min_text(1, message)


def identifier(message: str):
    """Return a UUID type whose parse failures report `message`."""
    def _coerce(value):
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except (TypeError, ValueError, AttributeError):
            raise ValueError(message)
    return Annotated[uuid.UUID, BeforeValidator(_coerce)]


Name = min_text(2, "Name must be at least 2 characters.")
Status = required_text("Please select a status.")
ShortDescription = min_text(10, "Description must be at least 10 characters.")


class CamelModel(BaseModel):
    """Base schema that accepts and emits camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class ApplicationIn(CamelModel):
    """Create/update payload for an application."""
    name: Name
    status: Status
    app_type: str = Field(alias="type")
    short_description: ShortDescription
    product_specs: min_text(20, "Product specs must be at least 20 characters.")
    feature_breakdown: Optional[str] = None
    images: Optional[List[str]] = None


class FeatureIn(CamelModel):
    """Create/update payload for a single feature."""
    name: Name
    status: Status
    feature_type: str
    short_description: ShortDescription
    feature_specs: Optional[str] = None
    story_breakdown: Optional[str] = None
    app_id: identifier("Valid application ID is required.")


class FeatureBulkIn(CamelModel):
    """Payload for generating and storing many features at once."""
    app_name: str
    status: str
    feature_type: str = Field(alias="type")
    specifications: str
    feature_breakdown: str
    app_id: identifier("Valid application ID is required.")


class UserStoryIn(CamelModel):
    """Create/update payload for a user story."""
    name: Name
    description: min_text(10, "Description must be at least 10 characters.")
    status: Status
    story_type: required_text("Please select a story type.")
    tech_spec_type: required_text("Please select a technical specification type.")
    user_story: min_text(10, "User story must be at least 10 characters.")
    acceptance_criteria: min_text(10, "Acceptance criteria must be at least 10 characters.")
    technical_specs: Optional[str] = None
    task_breakdown: Optional[str] = None
    feature_id: Optional[identifier("Valid feature ID is required.")] = None


class RecordOut(CamelModel):
    """Common columns of every planner record."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    name: str
    status: str
    images: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ApplicationOut(RecordOut):
    owner_id: uuid.UUID
    app_type: Optional[str] = Field(default=None, alias="type")
    short_description: Optional[str] = None
    product_specs: Optional[str] = None
    feature_breakdown: Optional[str] = None
    breakdown_status: str


class FeatureOut(RecordOut):
    app_id: uuid.UUID
    owner_id: uuid.UUID
    feature_type: Optional[str] = None
    short_description: Optional[str] = None
    feature_specs: Optional[str] = None
    story_breakdown: Optional[str] = None


class UserStoryOut(RecordOut):
    feature_id: uuid.UUID
    description: Optional[str] = None
    story_type: Optional[str] = None
    tech_spec_type: Optional[str] = None
    user_story: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    technical_specs: Optional[str] = None
    task_breakdown: Optional[str] = None
