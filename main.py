from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import argparse
import logging

from dev_dashboard.api import router as api_router
from dev_dashboard.database import init_db
from dev_dashboard.runtime import Runtime
from dev_dashboard.visualization import create_dash_app
from dev_dashboard import config


parser = argparse.ArgumentParser(description="Dev Dashboard entry point.")
parser.add_argument(
    "--dashboard-only",
    action="store_true",
    help="Run only the dashboard and API (no background sync).",
)
args, _ = parser.parse_known_args()
DASHBOARD_ONLY = args.dashboard_only

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = init_db(config.DATABASE_URL)
    runtime = Runtime(engine)
    app.state.runtime = runtime
    try:
        if not DASHBOARD_ONLY:
            runtime.start()
        else:
            logger.info("Running in DASHBOARD ONLY mode: background sync will not start.")
        yield
    finally:
        runtime.stop(timeout=5)
        logger.info("Application shutdown.")


app = FastAPI(
    title="Dev Dashboard",
    description="Tracks repositories, microservices, CI/CD actions and Kubernetes deployments",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=config.API_PREFIX)
create_dash_app(app)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
