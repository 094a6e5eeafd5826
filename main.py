from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

import services
from config import configure_logging, settings
from database import USERS, EntityStore, objid
from errors import InvalidIdentifier, ServiceError, Unauthenticated, ValidationFailed
from media import LocalMediaStorage, MediaStorage
from pagination import Page
from schemas import ApiResponse, ContentRequest, VideoQuery

logger = structlog.get_logger()


# -------------------- Helpers --------------------

def ok(data=None, message: str = "Success", status: int = 200) -> dict:
    return ApiResponse(status=status, data=data, message=message).model_dump()


def page_result(page: Page, message: str, empty_message: Optional[str] = None):
    """Personal feeds report an empty page as a 404 result rather than an error."""
    if empty_message and page.total == 0:
        body = ApiResponse(status=404, success=False, data=page.to_dict(), message=empty_message)
        return JSONResponse(status_code=404, content=body.model_dump())
    return ok(page.to_dict(), message)


def error_body(exc: ServiceError) -> dict:
    return {
        "status": exc.status_code,
        "success": False,
        "error": exc.kind,
        "message": exc.message,
    }


# -------------------- Dependencies --------------------

def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_media(request: Request) -> MediaStorage:
    return request.app.state.media


def get_optional_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    store: EntityStore = Depends(get_store),
) -> Optional[str]:
    """Acting user attached by the identity layer; None for anonymous reads."""
    if not x_user_id:
        return None
    try:
        user = store.find_by_id(USERS, objid(x_user_id, "user id"))
    except InvalidIdentifier:
        user = None
    if not user:
        raise Unauthenticated("Invalid user id")
    return x_user_id


def get_current_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    if not user_id:
        raise Unauthenticated("Missing X-User-Id header")
    return user_id


# -------------------- App --------------------

def create_app(store: Optional[EntityStore] = None, media: Optional[MediaStorage] = None) -> FastAPI:
    configure_logging(settings.log_level, settings.log_json)
    media = media or LocalMediaStorage(settings.upload_dir, settings.static_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.store is None
        if owned:
            app.state.store = EntityStore.connect(settings.database_url, settings.database_name)
        app.state.store.ensure_indexes()
        logger.info("Video sharing backend started", env=settings.app_env)
        yield
        if owned:
            app.state.store.close()
            app.state.store = None
        logger.info("Shutting down API")

    app = FastAPI(title="Video Sharing Backend", version="1.0.0", lifespan=lifespan, debug=settings.debug)
    app.state.store = store
    app.state.media = media

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Uploaded files are served from the local media directory
    if isinstance(media, LocalMediaStorage):
        app.mount(settings.static_url, StaticFiles(directory=media.upload_dir), name="static")

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("Request failed", kind=exc.kind, path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{where}: {first.get('msg')}" if where else "Invalid request"
        failure = ValidationFailed(message)
        return JSONResponse(status_code=failure.status_code, content=error_body(failure))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "status": 500,
                "success": False,
                "error": "InternalError",
                "message": "An internal error occurred. Please try again later.",
            },
        )

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # -------------------- Basic Routes --------------------
    @app.get("/")
    def read_root():
        return {"message": "Video Sharing Backend is running"}

    @app.get("/test")
    def test_database(store: EntityStore = Depends(get_store)):
        info = {
            "backend": "running",
            "database_connected": False,
            "collections": [],
        }
        try:
            store.ping()
            info["database_connected"] = True
            info["collections"] = store.list_collection_names()
        except ServiceError as e:
            info["error"] = e.message
        return info

    @app.get("/healthcheck")
    def healthcheck():
        return ok({"message": "Everything is O.K"}, "Ok")

    # -------------------- Videos --------------------
    @app.get("/videos")
    def list_videos(
        page: Optional[str] = None,
        limit: Optional[str] = None,
        query: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_type: Optional[str] = None,
        user_id: Optional[str] = None,
        store: EntityStore = Depends(get_store),
        actor: Optional[str] = Depends(get_optional_user_id),
    ):
        video_query = VideoQuery(
            text_query=query,
            owner_id=user_id,
            sort_by=sort_by or "created_at",
            sort_type=sort_type or "desc",
        )
        result = services.list_videos(store, video_query, page, limit, actor)
        return ok(result.to_dict(), "Videos fetched successfully")

    @app.post("/videos")
    def publish_video(
        title: str = Form(""),
        description: str = Form(""),
        duration: Optional[float] = Form(None),
        video_file: Optional[UploadFile] = File(None),
        thumbnail: Optional[UploadFile] = File(None),
        store: EntityStore = Depends(get_store),
        media: MediaStorage = Depends(get_media),
        user_id: str = Depends(get_current_user_id),
    ):
        video = services.publish_video(store, media, user_id, title, description, video_file, thumbnail, duration)
        return ok(video, "Video uploaded successfully")

    @app.get("/videos/{video_id}")
    def get_video(
        video_id: str,
        store: EntityStore = Depends(get_store),
        actor: Optional[str] = Depends(get_optional_user_id),
    ):
        return ok(services.get_video(store, video_id, actor), "Video fetched successfully")

    @app.patch("/videos/{video_id}")
    def update_video(
        video_id: str,
        title: str = Form(""),
        description: str = Form(""),
        thumbnail: Optional[UploadFile] = File(None),
        store: EntityStore = Depends(get_store),
        media: MediaStorage = Depends(get_media),
        user_id: str = Depends(get_current_user_id),
    ):
        video = services.update_video(store, media, video_id, user_id, title, description, thumbnail)
        return ok(video, "Video updated successfully")

    @app.delete("/videos/{video_id}")
    def delete_video(
        video_id: str,
        store: EntityStore = Depends(get_store),
        media: MediaStorage = Depends(get_media),
        user_id: str = Depends(get_current_user_id),
    ):
        return ok(services.delete_video(store, media, video_id, user_id), "Video deleted successfully")

    @app.patch("/videos/{video_id}/publish")
    def toggle_publish(
        video_id: str,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        return ok(services.toggle_publish(store, video_id, user_id), "Publish status toggled")

    # -------------------- Comments --------------------
    @app.get("/videos/{video_id}/comments")
    def list_comments(
        video_id: str,
        page: Optional[str] = None,
        limit: Optional[str] = None,
        store: EntityStore = Depends(get_store),
        actor: Optional[str] = Depends(get_optional_user_id),
    ):
        result = services.list_comments(store, video_id, page, limit, actor)
        return ok(result.to_dict(), "Comments fetched successfully")

    @app.post("/videos/{video_id}/comments")
    def add_comment(
        video_id: str,
        payload: ContentRequest,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        return ok(services.add_comment(store, video_id, user_id, payload.content), "Comment created successfully")

    @app.patch("/comments/{comment_id}")
    def update_comment(
        comment_id: str,
        payload: ContentRequest,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        comment = services.update_comment(store, comment_id, user_id, payload.content)
        return ok(comment, "Comment updated successfully")

    @app.delete("/comments/{comment_id}")
    def delete_comment(
        comment_id: str,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        return ok(services.delete_comment(store, comment_id, user_id), "Comment deleted successfully")

    # -------------------- Tweets --------------------
    @app.post("/tweets")
    def create_tweet(
        payload: ContentRequest,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        return ok(services.create_tweet(store, user_id, payload.content), "Tweet created")

    @app.get("/users/{user_id}/tweets")
    def list_user_tweets(
        user_id: str,
        page: Optional[str] = None,
        limit: Optional[str] = None,
        store: EntityStore = Depends(get_store),
        actor: Optional[str] = Depends(get_optional_user_id),
    ):
        result = services.list_user_tweets(store, user_id, page, limit, actor)
        return page_result(result, "Tweets fetched successfully", "No tweets found for this user")

    @app.patch("/tweets/{tweet_id}")
    def update_tweet(
        tweet_id: str,
        payload: ContentRequest,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        return ok(services.update_tweet(store, tweet_id, user_id, payload.content), "Tweet updated")

    @app.delete("/tweets/{tweet_id}")
    def delete_tweet(
        tweet_id: str,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        return ok(services.delete_tweet(store, tweet_id, user_id), "Tweet deleted successfully")

    # -------------------- Likes --------------------
    def _like_route(kind: str):
        def toggle(
            target_id: str,
            store: EntityStore = Depends(get_store),
            user_id: str = Depends(get_current_user_id),
        ):
            result = services.toggle_target_like(store, kind, target_id, user_id)
            verb = "liked" if result["is_liked"] else "unliked"
            return ok(result, f"{kind.capitalize()} {verb} successfully")

        toggle.__name__ = f"toggle_{kind}_like"
        return toggle

    app.post("/videos/{target_id}/like")(_like_route("video"))
    app.post("/comments/{target_id}/like")(_like_route("comment"))
    app.post("/tweets/{target_id}/like")(_like_route("tweet"))

    @app.get("/likes/videos")
    def list_liked_videos(
        page: Optional[str] = None,
        limit: Optional[str] = None,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        result = services.list_liked_videos(store, user_id, page, limit)
        return page_result(result, "Liked videos fetched successfully", "No liked videos found")

    # -------------------- Subscriptions & Channel --------------------
    @app.post("/channels/{channel_id}/subscribe")
    def subscribe_channel(
        channel_id: str,
        store: EntityStore = Depends(get_store),
        user_id: str = Depends(get_current_user_id),
    ):
        result = services.toggle_channel_subscription(store, channel_id, user_id)
        message = "Subscribed successfully" if result["subscribed"] else "Unsubscribed successfully"
        return ok(result, message)

    @app.get("/channels/{channel_id}")
    def get_channel(
        channel_id: str,
        store: EntityStore = Depends(get_store),
        actor: Optional[str] = Depends(get_optional_user_id),
    ):
        return ok(services.get_channel(store, channel_id, actor), "Channel fetched successfully")

    @app.get("/channels/{channel_id}/subscribers")
    def list_channel_subscribers(
        channel_id: str,
        page: Optional[str] = None,
        limit: Optional[str] = None,
        store: EntityStore = Depends(get_store),
    ):
        result = services.list_channel_subscribers(store, channel_id, page, limit)
        return page_result(result, "Subscribers fetched successfully", "No subscribers found for this channel")

    @app.get("/users/{user_id}/subscriptions")
    def list_subscribed_channels(
        user_id: str,
        page: Optional[str] = None,
        limit: Optional[str] = None,
        store: EntityStore = Depends(get_store),
    ):
        result = services.list_subscribed_channels(store, user_id, page, limit)
        return ok(result.to_dict(), "Subscribed channels fetched successfully")


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
