"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the feature planner backend.
Controllers are intentionally thin: they resolve the caller, parse ids,
delegate to services and wrap results in the `{data, error, message}`
envelope.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- GET, POST /applications
- GET, PUT, DELETE /application-details?appId=
- GET, POST /features
- GET, POST, PUT, DELETE /feature-details?featureId=
- GET /stories?featureId=
- GET, POST, PUT, DELETE /story-details?storyId=
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlmodel import Session
from typing import Optional
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, repositories, models, schemas
from .auth import get_current_owner
from .schemas import RegisterIn
from .utils.breakdown import BreakdownGenerator, GenerationError, get_breakdown_generator
from .utils.rate_limit import InMemoryRateLimiter
from .config import settings

app = FastAPI(title="Feature Planner API")
logger = logging.getLogger("planner.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_generation_rate_limiter = InMemoryRateLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _request_fields(request: Request, started: float, **extra) -> str:
    """JSON log payload for one request; `owner_id` is set by `get_current_owner`."""
    fields = {
        "request_id": request.state.request_id,
        "method": request.method,
        "path": request.url.path,
        "owner_id": getattr(request.state, "owner_id", None),
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
    }
    fields.update(extra)
    return json.dumps(fields, ensure_ascii=True)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _request_fields(request, started))
        raise
    response.headers["X-Request-ID"] = request.state.request_id
    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    logger.log(level, "request_done %s", _request_fields(request, started, status_code=response.status_code))
    return response


def _format_validation_errors(errors) -> str:
    """Join pydantic error entries into one human readable message."""
    messages = []
    for err in errors:
        if err.get("type") == "value_error" and "error" in err.get("ctx", {}):
            messages.append(str(err["ctx"]["error"]))
            continue
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        messages.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return ", ".join(messages)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid data format", "message": _format_validation_errors(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


def _parse_id(raw: Optional[str], label: str) -> uuid.UUID:
    """Parse a required id query parameter or raise a 400."""
    if not raw:
        raise HTTPException(status_code=400, detail=f"{label} ID is required")
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label.lower()} ID")


def _dump(schema, obj) -> dict:
    return schema.model_validate(obj).model_dump(by_alias=True, mode="json")


def _not_found(exc: services.NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


def _failure(message: str, exc: Exception) -> JSONResponse:
    """Log an unexpected error and echo it back for diagnostics."""
    logger.exception(message)
    return JSONResponse(status_code=500, content={"message": message, "error": str(exc)})


def _enforce_generation_rate_limit(owner: models.User) -> None:
    allowed, retry_after = _generation_rate_limiter.allow(
        f"generate:{owner.id}",
        settings.GENERATION_RATE_LIMIT_PER_MIN,
        settings.GENERATION_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user (idempotent).

    Returns the existing user if the username is already taken so the
    operation can be repeated by automation and tests.
    """
    existing = repositories.UserRepository(db).get_by_username(payload.username)
    if existing:
        return {'id': str(existing.id), 'username': existing.username}
    user = services.AuthService(db).register(payload.username, payload.password)
    return {'id': str(user.id), 'username': user.username}


@app.post('/auth/login')
def login(payload: RegisterIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token."""
    token = services.AuthService(db).authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.get('/applications')
def list_applications(
    app_id: Optional[str] = Query(default=None, alias="id"),
    breakdown_status: Optional[str] = Query(default=None, alias="breakdownStatus"),
    db: Session = Depends(get_session),
    owner: models.User = Depends(get_current_owner),
):
    """List the caller's applications, newest first.

    `id` narrows the list to one application; `breakdownStatus` filters on
    the feature breakdown state (`none`, `pending`, `completed`, `failed`).
    """
    parsed_id = _parse_id(app_id, "Application") if app_id else None
    if breakdown_status is not None and breakdown_status not in models.BREAKDOWN_STATUSES:
        raise HTTPException(status_code=400, detail=f"breakdownStatus must be one of {', '.join(models.BREAKDOWN_STATUSES)}")
    try:
        apps = services.ApplicationService(db).list(owner.id, app_id=parsed_id, breakdown_status=breakdown_status)
    except Exception as e:
        return _failure("Failed to fetch applications", e)
    return {'data': [_dump(schemas.ApplicationOut, a) for a in apps]}


@app.post('/applications')
def create_application(
    payload: schemas.ApplicationIn,
    db: Session = Depends(get_session),
    owner: models.User = Depends(get_current_owner),
    generator: BreakdownGenerator = Depends(get_breakdown_generator),
):
    """Create an application and optionally generate its features.

    When `featureBreakdown` is given the generated features are stored with
    status "Refinement Needed". A generation failure keeps the application
    and answers 500 with `warning: true` and the created row in `data`.
    """
    if (payload.feature_breakdown or "").strip():
        _enforce_generation_rate_limit(owner)
    try:
        result = services.ApplicationService(db, generator).create(owner.id, payload)
    except Exception as e:
        return _failure("Failed to create application", e)
    application = _dump(schemas.ApplicationOut, result['application'])
    if result['error']:
        return JSONResponse(
            status_code=500,
            content={
                'data': application,
                'message': 'App created but failed to generate features...',
                'error': result['error'],
                'warning': True,
            },
        )
    return {
        'data': application,
        'features': [_dump(schemas.FeatureOut, f) for f in result['features']],
        'message': 'Application created',
    }


@app.get('/application-details')
def get_application(app_id: Optional[str] = Query(default=None, alias="appId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    parsed_id = _parse_id(app_id, "Application")
    try:
        application = services.ApplicationService(db).get(parsed_id, owner.id)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to fetch application details", e)
    return {'data': _dump(schemas.ApplicationOut, application)}


@app.put('/application-details')
def update_application(
    payload: schemas.ApplicationIn,
    app_id: Optional[str] = Query(default=None, alias="appId"),
    db: Session = Depends(get_session),
    owner: models.User = Depends(get_current_owner),
):
    """Replace all mutable fields of an application (full-document update)."""
    parsed_id = _parse_id(app_id, "Application")
    try:
        application = services.ApplicationService(db).update(parsed_id, owner.id, payload)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to update application", e)
    return {'data': _dump(schemas.ApplicationOut, application)}


@app.delete('/application-details')
def delete_application(app_id: Optional[str] = Query(default=None, alias="appId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    """Delete an application together with its features and stories."""
    parsed_id = _parse_id(app_id, "Application")
    try:
        deleted = services.ApplicationService(db).delete(parsed_id, owner.id)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to delete application", e)
    return {'data': _dump(schemas.ApplicationOut, deleted), 'message': 'Application successfully deleted'}


@app.get('/features')
def list_features(app_id: Optional[str] = Query(default=None, alias="appId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    """List features of one application, newest first. `appId` is required."""
    parsed_id = _parse_id(app_id, "Application")
    try:
        features = services.FeatureService(db).list(parsed_id, owner.id)
    except Exception as e:
        return _failure("Failed to fetch features", e)
    return {'data': [_dump(schemas.FeatureOut, f) for f in features]}


@app.post('/features')
def generate_features(
    payload: schemas.FeatureBulkIn,
    db: Session = Depends(get_session),
    owner: models.User = Depends(get_current_owner),
    generator: BreakdownGenerator = Depends(get_breakdown_generator),
):
    """Generate features with the breakdown generator and store them all.

    Nothing is stored when generation fails.
    """
    _enforce_generation_rate_limit(owner)
    try:
        features = services.FeatureService(db, generator).bulk_create(owner.id, payload)
    except services.NotFoundError as e:
        return _not_found(e)
    except GenerationError as e:
        logger.warning("feature generation failed: %s", e)
        return JSONResponse(status_code=500, content={'message': 'Failed to generate features', 'error': str(e)})
    except Exception as e:
        return _failure("Failed to generate features", e)
    return {'data': [_dump(schemas.FeatureOut, f) for f in features]}


@app.get('/feature-details')
def get_feature(feature_id: Optional[str] = Query(default=None, alias="featureId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    parsed_id = _parse_id(feature_id, "Feature")
    try:
        feature = services.FeatureService(db).get(parsed_id, owner.id)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to fetch feature details", e)
    return {'data': _dump(schemas.FeatureOut, feature)}


@app.post('/feature-details')
def create_feature(payload: schemas.FeatureIn, db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    """Create a single feature under an application the caller owns."""
    try:
        feature = services.FeatureService(db).create(owner.id, payload)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to create feature", e)
    return {'data': _dump(schemas.FeatureOut, feature), 'message': 'Feature created successfully'}


@app.put('/feature-details')
def update_feature(
    payload: schemas.FeatureIn,
    feature_id: Optional[str] = Query(default=None, alias="featureId"),
    db: Session = Depends(get_session),
    owner: models.User = Depends(get_current_owner),
):
    parsed_id = _parse_id(feature_id, "Feature")
    try:
        feature = services.FeatureService(db).update(parsed_id, owner.id, payload)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to update feature", e)
    return {'data': _dump(schemas.FeatureOut, feature)}


@app.delete('/feature-details')
def delete_feature(feature_id: Optional[str] = Query(default=None, alias="featureId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    parsed_id = _parse_id(feature_id, "Feature")
    try:
        deleted = services.FeatureService(db).delete(parsed_id, owner.id)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to delete feature", e)
    return {'data': _dump(schemas.FeatureOut, deleted), 'message': 'Feature successfully deleted'}


@app.get('/stories')
def list_stories(feature_id: Optional[str] = Query(default=None, alias="featureId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    """List user stories of a feature, newest first.

    The frontend sends the literal string "undefined" before a feature is
    selected; that value is rejected like a missing id.
    """
    if not feature_id or feature_id == "undefined":
        raise HTTPException(status_code=400, detail="Valid featureId is required")
    parsed_id = _parse_id(feature_id, "Feature")
    try:
        stories = services.StoryService(db).list(parsed_id, owner.id)
    except Exception as e:
        return _failure("Failed to fetch user stories", e)
    return {'data': [_dump(schemas.UserStoryOut, s) for s in stories]}


@app.get('/story-details')
def get_story(story_id: Optional[str] = Query(default=None, alias="storyId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    parsed_id = _parse_id(story_id, "Story")
    try:
        story = services.StoryService(db).get(parsed_id, owner.id)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to fetch user story", e)
    return {'data': _dump(schemas.UserStoryOut, story)}


@app.post('/story-details')
def create_story(payload: schemas.UserStoryIn, db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    """Create a user story under a feature the caller owns."""
    try:
        story = services.StoryService(db).create(owner.id, payload)
    except ValueError as e:
        return JSONResponse(status_code=400, content={'error': str(e)})
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to create user story", e)
    return {'data': _dump(schemas.UserStoryOut, story), 'message': 'User story created successfully'}


@app.put('/story-details')
def update_story(
    payload: schemas.UserStoryIn,
    story_id: Optional[str] = Query(default=None, alias="storyId"),
    db: Session = Depends(get_session),
    owner: models.User = Depends(get_current_owner),
):
    parsed_id = _parse_id(story_id, "Story")
    try:
        story = services.StoryService(db).update(parsed_id, owner.id, payload)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to update user story", e)
    return {'data': _dump(schemas.UserStoryOut, story), 'message': 'User story updated successfully'}


@app.delete('/story-details')
def delete_story(story_id: Optional[str] = Query(default=None, alias="storyId"), db: Session = Depends(get_session), owner: models.User = Depends(get_current_owner)):
    parsed_id = _parse_id(story_id, "Story")
    try:
        deleted = services.StoryService(db).delete(parsed_id, owner.id)
    except services.NotFoundError as e:
        return _not_found(e)
    except Exception as e:
        return _failure("Failed to delete user story", e)
    return {'data': _dump(schemas.UserStoryOut, deleted), 'message': 'User story successfully deleted'}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
