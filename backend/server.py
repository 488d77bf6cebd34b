from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
load_dotenv()  # Load .env file before any os.environ calls
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional
import os
import logging

from routes import (
    auth_router, set_auth_deps,
    records_router, workflow_router, set_records_deps,
    dashboard_router, set_dashboard_deps,
)
from services.bootstrap import ReviewServices, build_review_services, hash_password, load_principals
from services.record_store import MongoRecordStore
from services.review_config import ReviewConfig

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def _wire(app: FastAPI, services: ReviewServices) -> None:
    set_auth_deps(services)
    set_records_deps(services)
    set_dashboard_deps(services)
    app.state.services = services


def create_app(services: Optional[ReviewServices] = None) -> FastAPI:
    """
    Build the API. Without ``services`` the app is backed by MongoDB
    (MONGO_URL / DB_NAME); tests pass in-memory services instead.
    """
    app = FastAPI(title="Survey Review Hub API")
    api_router = APIRouter(prefix="/api")
    api_router.include_router(auth_router)
    api_router.include_router(records_router)
    api_router.include_router(workflow_router)
    api_router.include_router(dashboard_router)
    app.include_router(api_router)

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint for Docker/Kubernetes probes."""
        return {"status": "healthy", "service": "survey-review-hub"}

    if services is not None:
        config = services.config
        _wire(app, services)
    else:
        config = ReviewConfig.from_env()
        client = AsyncIOMotorClient(config.mongo_url)
        db = client[config.db_name]
        store = MongoRecordStore(db.survey_records)
        _wire(app, build_review_services(config, store))

        @app.on_event("startup")
        async def startup():
            await store.ensure_indexes()
            await db.users.create_index("user_id", unique=True)
            users = await db.users.find({}, {"_id": 0}).to_list(10000)
            loaded = load_principals(app.state.services, users)

            admin_password = os.environ.get('ADMIN_PASSWORD', '')
            if loaded == 0 and admin_password:
                admin_id = os.environ.get('ADMIN_USER_ID', 'admin')
                app.state.services.directory.add_user(admin_id, display_name="Administrator", is_administrator=True)
                app.state.services.credentials[admin_id] = hash_password(admin_password)
                logger.info("No users found; bootstrap administrator %s enabled", admin_id)

            logger.info(
                "Survey Review Hub started. Sampling: %d%%, assignment: %s",
                config.sampling_percentage, config.assignment_strategy
            )

        @app.on_event("shutdown")
        async def shutdown_db_client():
            client.close()

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


app = create_app()
