from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

import settings
from app_config import AppConfig
from app_logger import get_logger, setup_logging
from loader import load
from reconciler import save_and_disconnect
from store import Store, StoreError, StoreNotFoundError
from tutoring_router import tutoring_router

logger = get_logger('server')


def create_app(
    database_url: Optional[str] = None,
    config_path: Optional[str] = None,
    sync_on_shutdown: Optional[bool] = None,
) -> FastAPI:
    database_url = database_url or settings.DATABASE_URL
    config_path = config_path or settings.CONFIG_PATH
    if sync_on_shutdown is None:
        sync_on_shutdown = settings.SYNC_ON_SHUTDOWN

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        config = AppConfig.load(config_path)
        store = Store(database_url)
        try:
            working_set = load(store, config)
        except StoreNotFoundError:
            logger.critical('Please create the database before starting the server.')
            raise SystemExit(1)

        app.state.config = config
        app.state.store = store
        app.state.working_set = working_set
        logger.info('Server started.')
        yield

        logger.info('Shutdown signal received. Performing cleanup.')
        try:
            if sync_on_shutdown:
                save_and_disconnect(store, config, working_set)
                logger.info('Database synchronized and disconnected.')
            else:
                store.disconnect()
        except StoreError as exc:
            logger.error('Error during cleanup: %s', exc)

    app = FastAPI(lifespan=lifespan)
    app.include_router(tutoring_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8443)
