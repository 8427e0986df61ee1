import contextlib
from datetime import timedelta
import functools
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from databases import Database
from rich.logging import RichHandler
from starlette.applications import Starlette
from starlette.datastructures import UploadFile
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from app import config
from domain import services
from domain.auth import TokenAuthority
from domain.blobstore import BlobStore, HttpBlobStore, LocalBlobStore, Upload
from domain.errors import AuthenticationError, NotFoundError, RamenRoadError, ValidationError
from domain.models import Member
from domain.repository import (
    MemberRepository,
    PlannedRestaurantRepository,
    RestaurantRepository,
    ScheduleRepository,
    create_tables,
)


CONFIG = config.Config()


logging.basicConfig(
    level=CONFIG.log_level,
    format="%(name)s: %(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger(__name__)


# Multipart fields that carry JSON rather than plain text.
JSON_FIELDS = ("members", "tags")


def aJSONResponse(route: Callable[..., Awaitable[Any | tuple[Any, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> JSONResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            content, code = resp, 200
        else:
            content, code = resp
        return JSONResponse(content, status_code=code)

    return wrapper


async def read_body(request: Request) -> tuple[dict[str, Any], dict[str, Upload]]:
    """JSON bodies and multipart forms, the latter possibly carrying images."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        fields: dict[str, Any] = {}
        files: dict[str, Upload] = {}
        async with request.form() as form:
            for key, value in form.multi_items():
                if isinstance(value, UploadFile):
                    if value.size:
                        files[key] = Upload(
                            data=await value.read(),
                            filename=value.filename or "",
                            content_type=value.content_type or "",
                        )
                elif key in JSON_FIELDS:
                    try:
                        fields[key] = json.loads(value)
                    except ValueError as e:
                        raise ValidationError(f"{key} must be JSON.") from e
                else:
                    fields[key] = value
        return fields, files

    raw = await request.body()
    if not raw:
        return {}, {}
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise ValidationError("Request body must be JSON.") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body, {}


def member_names(members: object) -> list[object]:
    if not isinstance(members, list):
        raise ValidationError("members must be a list of {name} objects.")
    return [m.get("name") if isinstance(m, dict) else m for m in members]


async def current_member(request: Request) -> Member:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Authentication token required.")
    authority: TokenAuthority = request.app.state.authority
    member_id = authority.verify(token)
    member = await MemberRepository(request.app.state.db).get(member_id)
    if member is None:
        raise AuthenticationError("Member no longer exists.")
    return member


async def domain_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RamenRoadError)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def server_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": "Internal server error"}, status_code=500)


@aJSONResponse
async def health(request: Request) -> dict[str, str]:
    return {"status": "healthy"}


@aJSONResponse
async def register(request: Request) -> tuple[dict[str, Any], int]:
    body, files = await read_body(request)
    cfg: config.Config = request.app.state.config
    member = await services.register(
        name=body.get("name"),
        email=body.get("email"),
        password=body.get("password"),
        nickname=body.get("nickname"),
        profile_image=files.get("profileImage"),
        members=MemberRepository(request.app.state.db),
        blobs=request.app.state.blobs,
        admin_emails=cfg.admin_emails,
        default_image_url=cfg.default_profile_image_url,
    )
    return {"message": "Welcome aboard!", "member": member.to_dict()}, 201


@aJSONResponse
async def login(request: Request) -> dict[str, Any]:
    body, _ = await read_body(request)
    token, member = await services.login(
        email=body.get("email"),
        password=body.get("password"),
        members=MemberRepository(request.app.state.db),
        authority=request.app.state.authority,
    )
    return {"message": "Logged in.", "token": token, "member": member.to_dict()}


@aJSONResponse
async def members(request: Request) -> list[dict[str, Any]]:
    return [m.to_dict() for m in await MemberRepository(request.app.state.db).list()]


@aJSONResponse
async def member_detail(request: Request) -> dict[str, Any]:
    id = request.path_params["id"]
    repo = MemberRepository(request.app.state.db)
    match request.method.lower():
        case "get":
            member = await repo.get(id)
            if member is None:
                raise NotFoundError("Member not found.")
            return member.to_dict()
        case "patch":
            acting = await current_member(request)
            body, files = await read_body(request)
            member = await services.update_profile(
                id=id,
                acting=acting,
                nickname=body.get("nickname"),
                profile_image=files.get("profileImage"),
                members=repo,
                blobs=request.app.state.blobs,
            )
            return {"message": "Profile updated.", "member": member.to_dict()}
        case "delete":
            acting = await current_member(request)
            await services.delete_member(id=id, acting=acting, members=repo)
            return {"message": "Account deleted."}
        case _:
            raise ValueError("Unsupported method.")


@aJSONResponse
async def visited_ramen(request: Request) -> Any:
    repo = RestaurantRepository(request.app.state.db)
    match request.method.lower():
        case "get":
            return [r.to_dict() for r in await repo.list()]
        case "post":
            acting = await current_member(request)
            body, files = await read_body(request)
            restaurant, created = await services.add_visit(
                name=body.get("name"),
                location=body.get("location"),
                visit_date=body.get("visitDate"),
                member_names=member_names(body.get("members")),
                tags=body.get("tags"),
                banner=files.get("bannerImage"),
                acting=acting,
                restaurants=repo,
                blobs=request.app.state.blobs,
                default_banner_url=request.app.state.config.default_banner_url,
            )
            if created:
                message = "New restaurant added."
            else:
                message = "Revisit recorded."
            return {"message": message, "restaurant": restaurant.to_dict()}, (
                201 if created else 200
            )
        case _:
            raise ValueError("Unsupported method.")


@aJSONResponse
async def visited_ramen_detail(request: Request) -> dict[str, Any]:
    id = request.path_params["id"]
    repo = RestaurantRepository(request.app.state.db)
    match request.method.lower():
        case "get":
            restaurant = await repo.get(id)
            if restaurant is None:
                raise NotFoundError("Restaurant not found.")
            return restaurant.to_dict()
        case "patch":
            acting = await current_member(request)
            body, files = await read_body(request)
            restaurant = await services.update_restaurant(
                id=id,
                acting=acting,
                name=body.get("name"),
                location=body.get("location"),
                tags=body.get("tags"),
                banner=files.get("bannerImage"),
                restaurants=repo,
                blobs=request.app.state.blobs,
            )
            return {"message": "Restaurant updated.", "restaurant": restaurant.to_dict()}
        case "delete":
            acting = await current_member(request)
            await services.delete_restaurant(id=id, acting=acting, restaurants=repo)
            return {"message": "Restaurant deleted."}
        case _:
            raise ValueError("Unsupported method.")


@aJSONResponse
async def rating(request: Request) -> dict[str, Any]:
    acting = await current_member(request)
    body, _ = await read_body(request)
    restaurant = await services.rate(
        restaurant_id=request.path_params["id"],
        visit_number=request.path_params["visit_count"],
        member_name=request.path_params["member_name"],
        rating=body.get("rating"),
        review_text=body.get("reviewText"),
        acting=acting,
        restaurants=RestaurantRepository(request.app.state.db),
    )
    return {"message": "Rating saved.", "restaurant": restaurant.to_dict()}


@aJSONResponse
async def planned_ramen(request: Request) -> Any:
    repo = PlannedRestaurantRepository(request.app.state.db)
    match request.method.lower():
        case "get":
            return [p.to_dict() for p in await repo.list()]
        case "post":
            acting = await current_member(request)
            body, files = await read_body(request)
            entry = await services.add_planned(
                name=body.get("name"),
                location=body.get("location"),
                comment=body.get("recommendationComment"),
                banner=files.get("bannerImage"),
                acting=acting,
                planned=repo,
                blobs=request.app.state.blobs,
                default_banner_url=request.app.state.config.default_banner_url,
            )
            return {"message": "Planned restaurant added.", "plannedRamen": entry.to_dict()}, 201
        case _:
            raise ValueError("Unsupported method.")


@aJSONResponse
async def planned_ramen_detail(request: Request) -> dict[str, Any]:
    id = request.path_params["id"]
    repo = PlannedRestaurantRepository(request.app.state.db)
    match request.method.lower():
        case "get":
            entry = await repo.get(id)
            if entry is None:
                raise NotFoundError("Planned restaurant not found.")
            return entry.to_dict()
        case "delete":
            acting = await current_member(request)
            await services.delete_planned(id=id, acting=acting, planned=repo)
            return {"message": "Planned restaurant deleted."}
        case _:
            raise ValueError("Unsupported method.")


@aJSONResponse
async def schedules(request: Request) -> Any:
    repo = ScheduleRepository(request.app.state.db)
    match request.method.lower():
        case "get":
            return [s.to_dict() for s in await repo.list()]
        case "post":
            acting = await current_member(request)
            body, _ = await read_body(request)
            schedule = await services.create_schedule(
                planned_id=body.get("plannedRamenId"),
                title=body.get("title"),
                date_time=body.get("dateTime"),
                special_notes=body.get("specialNotes"),
                acting=acting,
                schedules=repo,
            )
            return {"message": "Schedule created.", "schedule": schedule.to_dict()}, 201
        case _:
            raise ValueError("Unsupported method.")


@aJSONResponse
async def join_schedule(request: Request) -> dict[str, Any]:
    acting = await current_member(request)
    schedule = await services.join_schedule(
        id=request.path_params["id"],
        acting=acting,
        schedules=ScheduleRepository(request.app.state.db),
    )
    return {"message": "Joined.", "schedule": schedule.to_dict()}


@aJSONResponse
async def leave_schedule(request: Request) -> dict[str, Any]:
    acting = await current_member(request)
    schedule = await services.leave_schedule(
        id=request.path_params["id"],
        acting=acting,
        schedules=ScheduleRepository(request.app.state.db),
    )
    return {"message": "Left.", "schedule": schedule.to_dict()}


ROUTES = [
    Route("/health", health),
    Route("/auth/register", register, methods=["POST"]),
    Route("/auth/login", login, methods=["POST"]),
    Route("/members", members),
    Route("/members/{id}", member_detail, methods=["GET", "PATCH", "DELETE"]),
    Route("/visited-ramen", visited_ramen, methods=["GET", "POST"]),
    Route(
        "/visited-ramen/{id}",
        visited_ramen_detail,
        methods=["GET", "PATCH", "DELETE"],
    ),
    Route(
        "/visited-ramen/{id}/visits/{visit_count:int}/members/{member_name}/rating",
        rating,
        methods=["PATCH"],
    ),
    Route("/planned-ramen", planned_ramen, methods=["GET", "POST"]),
    Route("/planned-ramen/{id}", planned_ramen_detail, methods=["GET", "DELETE"]),
    Route("/schedules", schedules, methods=["GET", "POST"]),
    Route("/schedules/{id}/join", join_schedule, methods=["POST"]),
    Route("/schedules/{id}/leave", leave_schedule, methods=["DELETE"]),
]


def blob_store_factory(cfg: config.Config) -> BlobStore:
    if cfg.blob_store_url:
        return HttpBlobStore(base_url=cfg.blob_store_url, max_bytes=cfg.max_upload_bytes)
    return LocalBlobStore(
        directory=cfg.uploads_dir,
        base_url=cfg.uploads_url,
        max_bytes=cfg.max_upload_bytes,
    )


def create_app(cfg: config.Config | None = None) -> Starlette:
    cfg = CONFIG if cfg is None else cfg

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await app.state.db.connect()
        await create_tables(app.state.db)
        logger.info("Ramen Road started (%s)", cfg.env.value)
        yield
        if isinstance(app.state.blobs, HttpBlobStore):
            await app.state.blobs.close()
        await app.state.db.disconnect()

    routes: list[Route | Mount] = list(ROUTES)
    # Local uploads are served by the app itself.
    if not cfg.blob_store_url and cfg.uploads_url.startswith("/"):
        routes.append(
            Mount(
                cfg.uploads_url,
                app=StaticFiles(directory=cfg.uploads_dir, check_dir=False),
            )
        )

    app = Starlette(
        debug=True if cfg.env == config.Env.local else False,
        routes=routes,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=[cfg.frontend_url],
                allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
                allow_headers=["Content-Type", "Authorization"],
            )
        ],
        exception_handlers={RamenRoadError: domain_error, Exception: server_error},
        lifespan=lifespan,
    )

    app.state.config = cfg
    app.state.db = Database(cfg.db_url)
    app.state.blobs = blob_store_factory(cfg)
    app.state.authority = TokenAuthority(
        cfg.secret_key, ttl=timedelta(hours=cfg.token_ttl_hours)
    )
    return app


app = create_app()
