"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the breakdown generator. Every operation receives the caller's
`owner_id` explicitly; services never read identity from globals.

Errors are reported with `NotFoundError` (no row matches the id for this
owner) and `GenerationError` (the breakdown generator failed). Payload
validation happens before a service is called, in `schemas`.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from . import models, repositories, schemas
from .config import settings
from .utils.breakdown import (
    BreakdownGenerator,
    FeatureDraft,
    GenerationError,
    application_prompt,
    bulk_feature_prompt,
)

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger("planner.services")


class NotFoundError(LookupError):
    """No record matches the requested id for the calling owner."""


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, password_hash=hashed)
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": str(user.id), "username": user.username, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def get_or_create_default_owner(self) -> models.User:
        """Return the configured single-tenant owner, creating it on first use.

        The account gets a random password so it cannot be logged into.
        """
        existing = self.user_repo.get_by_username(settings.DEFAULT_OWNER_USERNAME)
        if existing:
            return existing
        return self.register(settings.DEFAULT_OWNER_USERNAME, secrets.token_urlsafe(32))


def _drafts_to_features(drafts: List[FeatureDraft], app_id: uuid.UUID, owner_id: uuid.UUID, status: str, feature_type: Optional[str] = None) -> List[models.Feature]:
    return [
        models.Feature(
            app_id=app_id,
            owner_id=owner_id,
            name=d.name,
            short_description=d.description,
            feature_specs=d.technical_detail,
            status=status,
            feature_type=feature_type,
        )
        for d in drafts
    ]


class _PlanningService:
    """Shared wiring for services that may call the breakdown generator."""
    def __init__(self, session: Session, generator: Optional[BreakdownGenerator] = None):
        self.session = session
        self.generator = generator
        self.app_repo = repositories.ApplicationRepository(session)
        self.feature_repo = repositories.FeatureRepository(session)
        self.log_repo = repositories.ActionLogRepository(session)

    def _generate(self, prompt: str) -> List[FeatureDraft]:
        if self.generator is None:
            raise GenerationError("no breakdown generator configured")
        return self.generator.generate(prompt)

    def _log_generation(self, owner_id, entity_id, prompt, drafts=None, error=None):
        output = {"error": error} if error is not None else {"features": [d.model_dump() for d in drafts or []]}
        self.log_repo.record(models.ActionLog(
            owner_id=owner_id,
            action="generate",
            entity_type="feature",
            entity_id=entity_id,
            input_data={"prompt": prompt},
            output_data=output,
        ))


class ApplicationService(_PlanningService):
    """Application CRUD plus the optional AI feature breakdown."""

    def list(self, owner_id: uuid.UUID, app_id: Optional[uuid.UUID] = None, breakdown_status: Optional[str] = None) -> List[models.Application]:
        return self.app_repo.list_for_owner(owner_id, app_id=app_id, breakdown_status=breakdown_status)

    def get(self, app_id: uuid.UUID, owner_id: uuid.UUID) -> models.Application:
        application = self.app_repo.get_for_owner(app_id, owner_id)
        if not application:
            raise NotFoundError("Application not found")
        return application

    def create(self, owner_id: uuid.UUID, payload: schemas.ApplicationIn) -> dict:
        """Insert an application and, if requested, generate its features.

        The application row is committed before the generator runs. If
        generation fails the row stays, its `breakdown_status` becomes
        `failed` and the error text is returned under `error` instead of
        being raised. Returns `{application, features, error}`.
        """
        breakdown = (payload.feature_breakdown or "").strip()
        application = models.Application(
            owner_id=owner_id,
            name=payload.name,
            status=payload.status,
            app_type=payload.app_type,
            short_description=payload.short_description,
            product_specs=payload.product_specs,
            feature_breakdown=payload.feature_breakdown,
            images=list(payload.images or []),
            breakdown_status=models.BREAKDOWN_PENDING if breakdown else models.BREAKDOWN_NONE,
        )
        self.app_repo.create(application)
        if not breakdown:
            return {"application": application, "features": [], "error": None}

        prompt = application_prompt(application.name, application.short_description, application.product_specs, breakdown)
        try:
            drafts = self._generate(prompt)
            features = self.feature_repo.create_many(
                _drafts_to_features(drafts, application.id, owner_id, models.REFINEMENT_NEEDED)
            )
        except Exception as exc:
            # any generator or insert failure is a warning; the application row stays
            if isinstance(exc, (GenerationError, SQLAlchemyError)):
                logger.warning("feature breakdown failed for application %s: %s", application.id, exc)
            else:
                logger.exception("unexpected breakdown error for application %s", application.id)
            self.session.rollback()
            message = str(exc) or type(exc).__name__
            self._log_generation(owner_id, application.id, prompt, error=message)
            application.breakdown_status = models.BREAKDOWN_FAILED
            self.app_repo.save(application)
            return {"application": application, "features": [], "error": message}

        self._log_generation(owner_id, application.id, prompt, drafts=drafts)
        application.breakdown_status = models.BREAKDOWN_COMPLETED
        self.app_repo.save(application)
        logger.info("generated %d features for application %s", len(features), application.id)
        return {"application": application, "features": features, "error": None}

    def update(self, app_id: uuid.UUID, owner_id: uuid.UUID, payload: schemas.ApplicationIn) -> models.Application:
        """Replace every mutable field of the application.

        `images` is only replaced when the payload carries it.
        """
        application = self.get(app_id, owner_id)
        application.name = payload.name
        application.status = payload.status
        application.app_type = payload.app_type
        application.short_description = payload.short_description
        application.product_specs = payload.product_specs
        application.feature_breakdown = payload.feature_breakdown
        if payload.images is not None:
            application.images = list(payload.images)
        return self.app_repo.save(application)

    def delete(self, app_id: uuid.UUID, owner_id: uuid.UUID) -> schemas.ApplicationOut:
        """Delete the application and return a snapshot of the removed row."""
        application = self.get(app_id, owner_id)
        snapshot = schemas.ApplicationOut.model_validate(application)
        self.app_repo.delete(application)
        return snapshot


class FeatureService(_PlanningService):
    """Feature CRUD and bulk generation, scoped by owner."""

    def list(self, app_id: uuid.UUID, owner_id: uuid.UUID) -> List[models.Feature]:
        return self.feature_repo.list_for_app(app_id, owner_id)

    def get(self, feature_id: uuid.UUID, owner_id: uuid.UUID) -> models.Feature:
        feature = self.feature_repo.get_for_owner(feature_id, owner_id)
        if not feature:
            raise NotFoundError("Feature not found")
        return feature

    def _require_application(self, app_id: uuid.UUID, owner_id: uuid.UUID) -> models.Application:
        application = self.app_repo.get_for_owner(app_id, owner_id)
        if not application:
            raise NotFoundError("Application not found")
        return application

    def create(self, owner_id: uuid.UUID, payload: schemas.FeatureIn) -> models.Feature:
        self._require_application(payload.app_id, owner_id)
        feature = models.Feature(
            app_id=payload.app_id,
            owner_id=owner_id,
            name=payload.name,
            status=payload.status,
            feature_type=payload.feature_type,
            short_description=payload.short_description,
            feature_specs=payload.feature_specs,
            story_breakdown=payload.story_breakdown,
        )
        return self.feature_repo.create(feature)

    def bulk_create(self, owner_id: uuid.UUID, payload: schemas.FeatureBulkIn) -> List[models.Feature]:
        """Generate features for an application and store them all at once.

        Unlike application create, a generator failure is fatal here: the
        `GenerationError` propagates and no feature row is written.
        """
        self._require_application(payload.app_id, owner_id)
        prompt = bulk_feature_prompt(payload.app_name, payload.feature_type, payload.specifications, payload.feature_breakdown)
        try:
            drafts = self._generate(prompt)
        except GenerationError as exc:
            self._log_generation(owner_id, payload.app_id, prompt, error=str(exc))
            raise
        features = self.feature_repo.create_many(
            _drafts_to_features(drafts, payload.app_id, owner_id, payload.status, payload.feature_type)
        )
        self._log_generation(owner_id, payload.app_id, prompt, drafts=drafts)
        logger.info("bulk generated %d features for application %s", len(features), payload.app_id)
        return features

    def update(self, feature_id: uuid.UUID, owner_id: uuid.UUID, payload: schemas.FeatureIn) -> models.Feature:
        feature = self.get(feature_id, owner_id)
        if payload.app_id != feature.app_id:
            self._require_application(payload.app_id, owner_id)
        feature.app_id = payload.app_id
        feature.name = payload.name
        feature.status = payload.status
        feature.feature_type = payload.feature_type
        feature.short_description = payload.short_description
        feature.feature_specs = payload.feature_specs
        feature.story_breakdown = payload.story_breakdown
        return self.feature_repo.save(feature)

    def delete(self, feature_id: uuid.UUID, owner_id: uuid.UUID) -> schemas.FeatureOut:
        feature = self.get(feature_id, owner_id)
        snapshot = schemas.FeatureOut.model_validate(feature)
        self.feature_repo.delete(feature)
        return snapshot


class StoryService:
    """User story CRUD; ownership is checked through the parent feature."""
    def __init__(self, session: Session):
        self.session = session
        self.story_repo = repositories.UserStoryRepository(session)
        self.feature_repo = repositories.FeatureRepository(session)

    def list(self, feature_id: uuid.UUID, owner_id: uuid.UUID) -> List[models.UserStory]:
        return self.story_repo.list_for_feature(feature_id, owner_id)

    def get(self, story_id: uuid.UUID, owner_id: uuid.UUID) -> models.UserStory:
        story = self.story_repo.get_for_owner(story_id, owner_id)
        if not story:
            raise NotFoundError("User story not found")
        return story

    def _require_feature(self, feature_id: Optional[uuid.UUID], owner_id: uuid.UUID) -> models.Feature:
        if feature_id is None:
            raise ValueError("Feature ID is required")
        feature = self.feature_repo.get_for_owner(feature_id, owner_id)
        if not feature:
            raise NotFoundError("Feature not found")
        return feature

    def create(self, owner_id: uuid.UUID, payload: schemas.UserStoryIn) -> models.UserStory:
        feature = self._require_feature(payload.feature_id, owner_id)
        story = models.UserStory(
            feature_id=feature.id,
            name=payload.name,
            description=payload.description,
            status=payload.status,
            story_type=payload.story_type,
            tech_spec_type=payload.tech_spec_type,
            user_story=payload.user_story,
            acceptance_criteria=payload.acceptance_criteria,
            technical_specs=payload.technical_specs,
            task_breakdown=payload.task_breakdown,
            images=[],
        )
        return self.story_repo.create(story)

    def update(self, story_id: uuid.UUID, owner_id: uuid.UUID, payload: schemas.UserStoryIn) -> models.UserStory:
        """Replace the story's fields; `feature_id` moves it only when given."""
        story = self.get(story_id, owner_id)
        if payload.feature_id is not None and payload.feature_id != story.feature_id:
            story.feature_id = self._require_feature(payload.feature_id, owner_id).id
        story.name = payload.name
        story.description = payload.description
        story.status = payload.status
        story.story_type = payload.story_type
        story.tech_spec_type = payload.tech_spec_type
        story.user_story = payload.user_story
        story.acceptance_criteria = payload.acceptance_criteria
        story.technical_specs = payload.technical_specs
        story.task_breakdown = payload.task_breakdown
        return self.story_repo.save(story)

    def delete(self, story_id: uuid.UUID, owner_id: uuid.UUID) -> schemas.UserStoryOut:
        story = self.get(story_id, owner_id)
        snapshot = schemas.UserStoryOut.model_validate(story)
        self.story_repo.delete(story)
        return snapshot
