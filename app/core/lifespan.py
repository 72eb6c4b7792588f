# app/core/lifespan.py
# =============================================================================
# File: app/core/lifespan.py
# Description: Application lifespan management (startup/shutdown)
# =============================================================================

import asyncio
import logging
from contextlib import asynccontextmanager
from app.core.fastapi_types import FastAPI

from app.core import __version__
from app.core.app_state import AppState
from app.core.background_tasks import start_background_tasks, stop_background_tasks
from app.core.startup.infrastructure import (
   initialize_databases,
   initialize_redis_relay,
   initialize_storage,
   run_database_schemas
)
from app.core.startup.services import initialize_messaging
from app.core.shutdown import shutdown_all_services
from app.config.messaging_config import get_messaging_config

logger = logging.getLogger("campus.lifespan")


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================
@asynccontextmanager
async def lifespan(app_instance: FastAPI):
   """Application lifespan manager with structured initialization"""

   logger.info(f"Campus Chat {__version__} API starting up...")

   # Authorization and profile lookup may be injected before startup (tests, embedding)
   injected_authorization = getattr(app_instance.state, "authorization", None)
   injected_profiles = getattr(app_instance.state, "profiles", None)
   app_instance.state = AppState()
   app_instance.state.messaging_config = get_messaging_config()
   app_instance.state.authorization = injected_authorization
   app_instance.state.profiles = injected_profiles
   app_instance._shutdown_in_progress = False

   try:
       # Phase 1: Core Infrastructure
       logger.info("Phase 1: Initializing core infrastructure...")
       await initialize_databases(app_instance)
       await run_database_schemas(app_instance)
       await initialize_storage(app_instance)

       # Phase 2: Messaging core
       logger.info("Phase 2: Initializing messaging core...")
       await initialize_messaging(app_instance)

       # Phase 3: Multi-instance relay
       logger.info("Phase 3: Initializing Redis relay...")
       await initialize_redis_relay(app_instance)

       # Phase 4: Background Tasks
       logger.info("Phase 4: Starting background tasks...")
       await start_background_tasks(app_instance)

       logger.info("=" * 60)
       logger.info("Application startup complete - all systems operational")
       logger.info(f"Campus Chat v{__version__} ready to serve requests")
       logger.info("=" * 60)

       yield

   except Exception as startup_error:
       logger.error(f"Critical error during startup: {startup_error}", exc_info=True)
       raise

   finally:
       logger.info(f"Campus Chat v{__version__} API shutting down...")
       try:
           async with asyncio.timeout(30.0):
               await stop_background_tasks(app_instance)
               await shutdown_all_services(app_instance)
           logger.info(f"Campus Chat v{__version__} API stopped gracefully")
       except TimeoutError:
           logger.error("Shutdown timed out after 30s, forcing exit")
       except Exception as e:
           logger.error(f"Error during shutdown: {e}", exc_info=True)

# =============================================================================
# EOF
# =============================================================================
