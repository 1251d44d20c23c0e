"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
applications, features, user stories, action log). Repositories return
SQLModel objects and perform commits/refreshes where appropriate.
Ownership filters are applied here so that every query a service issues
is already scoped to the caller.
"""

import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from sqlmodel import Session, select
from . import models


def _touch(record) -> None:
    record.updated_at = datetime.now(timezone.utc)


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: uuid.UUID) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class ApplicationRepository:
    """Owner-scoped CRUD for `Application` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, application: models.Application) -> models.Application:
        self.session.add(application)
        self.session.commit()
        self.session.refresh(application)
        return application

    def list_for_owner(self, owner_id: uuid.UUID, app_id: Optional[uuid.UUID] = None, breakdown_status: Optional[str] = None) -> List[models.Application]:
        """Return the owner's applications, newest first.

        `app_id` narrows the result to a single row; `breakdown_status`
        filters on the enrichment state.
        """
        stmt = select(models.Application).where(models.Application.owner_id == owner_id)
        if app_id is not None:
            stmt = stmt.where(models.Application.id == app_id)
        if breakdown_status is not None:
            stmt = stmt.where(models.Application.breakdown_status == breakdown_status)
        stmt = stmt.order_by(models.Application.created_at.desc())
        return self.session.exec(stmt).all()

    def get_for_owner(self, app_id: uuid.UUID, owner_id: uuid.UUID) -> Optional[models.Application]:
        """Return the application only when both id and owner match."""
        stmt = select(models.Application).where(
            models.Application.id == app_id,
            models.Application.owner_id == owner_id
        )
        return self.session.exec(stmt).first()

    def save(self, application: models.Application) -> models.Application:
        """Commit pending changes on a managed application."""
        _touch(application)
        self.session.add(application)
        self.session.commit()
        self.session.refresh(application)
        return application

    def delete(self, application: models.Application) -> None:
        """Delete the application; features and stories follow via cascade."""
        self.session.delete(application)
        self.session.commit()


class FeatureRepository:
    """Owner-scoped CRUD for `Feature` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, feature: models.Feature) -> models.Feature:
        self.session.add(feature)
        self.session.commit()
        self.session.refresh(feature)
        return feature

    def create_many(self, features: Iterable[models.Feature]) -> List[models.Feature]:
        """Insert all `features` in a single commit.

        Either every row is stored or, if the commit fails, none are.
        """
        features = list(features)
        try:
            for f in features:
                self.session.add(f)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        for f in features:
            self.session.refresh(f)
        return features

    def list_for_app(self, app_id: uuid.UUID, owner_id: uuid.UUID) -> List[models.Feature]:
        """Return features of `app_id` owned by `owner_id`, newest first."""
        stmt = select(models.Feature).where(
            models.Feature.app_id == app_id,
            models.Feature.owner_id == owner_id
        ).order_by(models.Feature.created_at.desc())
        return self.session.exec(stmt).all()

    def get_for_owner(self, feature_id: uuid.UUID, owner_id: uuid.UUID) -> Optional[models.Feature]:
        stmt = select(models.Feature).where(
            models.Feature.id == feature_id,
            models.Feature.owner_id == owner_id
        )
        return self.session.exec(stmt).first()

    def save(self, feature: models.Feature) -> models.Feature:
        _touch(feature)
        self.session.add(feature)
        self.session.commit()
        self.session.refresh(feature)
        return feature

    def delete(self, feature: models.Feature) -> None:
        self.session.delete(feature)
        self.session.commit()


class UserStoryRepository:
    """CRUD for `UserStory` rows, scoped through the owning feature."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, story: models.UserStory) -> models.UserStory:
        self.session.add(story)
        self.session.commit()
        self.session.refresh(story)
        return story

    def list_for_feature(self, feature_id: uuid.UUID, owner_id: uuid.UUID) -> List[models.UserStory]:
        """Return stories of `feature_id` when the feature belongs to `owner_id`."""
        stmt = (
            select(models.UserStory)
            .join(models.Feature, models.Feature.id == models.UserStory.feature_id)
            .where(models.UserStory.feature_id == feature_id, models.Feature.owner_id == owner_id)
            .order_by(models.UserStory.created_at.desc())
        )
        return self.session.exec(stmt).all()

    def get_for_owner(self, story_id: uuid.UUID, owner_id: uuid.UUID) -> Optional[models.UserStory]:
        stmt = (
            select(models.UserStory)
            .join(models.Feature, models.Feature.id == models.UserStory.feature_id)
            .where(models.UserStory.id == story_id, models.Feature.owner_id == owner_id)
        )
        return self.session.exec(stmt).first()

    def save(self, story: models.UserStory) -> models.UserStory:
        _touch(story)
        self.session.add(story)
        self.session.commit()
        self.session.refresh(story)
        return story

    def delete(self, story: models.UserStory) -> None:
        self.session.delete(story)
        self.session.commit()


class ActionLogRepository:
    """Append-only store for AI invocation audit rows."""
    def __init__(self, session: Session):
        self.session = session

    def record(self, entry: models.ActionLog) -> models.ActionLog:
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_for_entity(self, entity_id: uuid.UUID) -> List[models.ActionLog]:
        stmt = select(models.ActionLog).where(models.ActionLog.entity_id == entity_id).order_by(models.ActionLog.created_at)
        return self.session.exec(stmt).all()
