import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from logging.config import dictConfig

import yaml
from fastapi import FastAPI

from capgate.core.version import __version__
from capgate.core.config import get_settings
from capgate.core.features.capabilities.router import router as capabilities_router
from capgate.core.features.capabilities.service import get_resolver

logger = logging.getLogger(__name__)
config = get_settings()
prefix = config.api_prefix


def configure_logging(path: Path | None) -> bool:
	"""Apply a YAML dictConfig file if it exists."""
	if path is None or not path.is_file():
		return False
	with open(path, "r") as stream:
		logging_config = yaml.safe_load(stream)
	dictConfig(logging_config)
	return True


@asynccontextmanager
async def lifespan(app: FastAPI):
	"""Application lifespan handler for startup/shutdown events."""
	logger.info("Starting capgate API server...")
	# Registers configured extra modules before the first request
	get_resolver()
	yield
	logger.info("Shutting down capgate API server...")


app = FastAPI(
	title="capgate capability authorization API",
	version=__version__,
	lifespan=lifespan,
)

app.include_router(capabilities_router, prefix=prefix)


logging_config_path = os.environ.get("CAPGATE__MAIN__LOGGING_CFG")
configure_logging(Path(logging_config_path) if logging_config_path else config.log_config)
