"""SQLModel data models.

This module defines the planner's database tables using SQLModel.
Ownership flows downward: a user owns applications, an application owns
features and a feature owns user stories. Deleting a parent through the
session removes its children via relationship cascades.
"""

import uuid
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field, Relationship

REFINEMENT_NEEDED = "Refinement Needed"

BREAKDOWN_NONE = "none"
BREAKDOWN_PENDING = "pending"
BREAKDOWN_COMPLETED = "completed"
BREAKDOWN_FAILED = "failed"
BREAKDOWN_STATUSES = (BREAKDOWN_NONE, BREAKDOWN_PENDING, BREAKDOWN_COMPLETED, BREAKDOWN_FAILED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=_now)


class Application(SQLModel, table=True):
    """A top-level planning unit describing a software product idea.

    `breakdown_status` tracks the optional AI feature breakdown that runs
    after the row is committed: `none`, `pending`, `completed` or `failed`.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    owner_id: uuid.UUID = Field(foreign_key='user.id', index=True)
    name: str = Field(max_length=255)
    status: str = Field(default=REFINEMENT_NEEDED, max_length=50)
    app_type: Optional[str] = Field(default=None, max_length=50)
    short_description: Optional[str] = None
    product_specs: Optional[str] = None
    feature_breakdown: Optional[str] = None
    breakdown_status: str = Field(default=BREAKDOWN_NONE, max_length=20, index=True)
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_now, index=True)
    updated_at: datetime = Field(default_factory=_now)
    features: List['Feature'] = Relationship(
        back_populates='application',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan'},
    )


class Feature(SQLModel, table=True):
    """A functional capability scoped to one `Application`."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    app_id: uuid.UUID = Field(foreign_key='application.id', index=True)
    owner_id: uuid.UUID = Field(foreign_key='user.id', index=True)
    name: str = Field(max_length=255)
    status: str = Field(default=REFINEMENT_NEEDED, max_length=50)
    feature_type: Optional[str] = Field(default=None, max_length=50)
    short_description: Optional[str] = None
    feature_specs: Optional[str] = None
    story_breakdown: Optional[str] = None
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_now, index=True)
    updated_at: datetime = Field(default_factory=_now)
    application: Optional[Application] = Relationship(back_populates='features')
    stories: List['UserStory'] = Relationship(
        back_populates='feature',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan'},
    )


class UserStory(SQLModel, table=True):
    """A concrete requirement scoped to one `Feature`.

    Stories carry no owner column; ownership is inherited from the feature.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    feature_id: uuid.UUID = Field(foreign_key='feature.id', index=True)
    name: str = Field(max_length=255)
    description: Optional[str] = None
    status: str = Field(default=REFINEMENT_NEEDED, max_length=50)
    story_type: Optional[str] = Field(default=None, max_length=50)
    tech_spec_type: Optional[str] = Field(default=None, max_length=50)
    user_story: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    technical_specs: Optional[str] = None
    task_breakdown: Optional[str] = None
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_now, index=True)
    updated_at: datetime = Field(default_factory=_now)
    feature: Optional[Feature] = Relationship(back_populates='stories')


class Prompt(SQLModel, table=True):
    """A reusable prompt template keyed by `prompt_type`/`sub_type`."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    owner_id: uuid.UUID = Field(foreign_key='user.id', index=True)
    prompt_type: str = Field(max_length=50)
    sub_type: Optional[str] = Field(default=None, max_length=50)
    content: str
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class Plan(SQLModel, table=True):
    """A subscription plan with its monthly token allotment."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(max_length=50, unique=True)
    monthly_tokens: int
    price_cents: int
    created_at: datetime = Field(default_factory=_now)


class ActionLog(SQLModel, table=True):
    """Audit row for one AI invocation.

    `entity_id` is the parent record the generation ran for; `input_data`
    holds the prompt and `output_data` the drafts or the error text.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    owner_id: uuid.UUID = Field(foreign_key='user.id', index=True)
    action: str = Field(max_length=50)
    entity_type: str = Field(max_length=50)
    entity_id: Optional[uuid.UUID] = Field(default=None, index=True)
    input_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    output_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_now)
