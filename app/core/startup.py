"""
Startup validation and lifecycle hooks for the HealthHire usage service
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Tuple

from fastapi import FastAPI

from app.core.config import settings
from app.core.database import Base, engine
from app.core.usage_limits import validate_limit_configuration
from app.services.usage_scheduler import UsageResetScheduler

logger = logging.getLogger(__name__)

class StartupValidationError(Exception):
    """Raised when startup validation fails"""
    pass

def validate_secret_key() -> Tuple[bool, List[str]]:
    """
    Validate the SECRET_KEY used to verify bearer tokens

    Returns:
        Tuple of (is_valid, list_of_issues)
    """
    issues = []

    if not settings.SECRET_KEY:
        issues.append("SECRET_KEY is not set")
        return False, issues

    # Check minimum length (32 bytes = 256 bits)
    min_length = 32
    if len(settings.SECRET_KEY.encode('utf-8')) < min_length:
        issues.append(f"SECRET_KEY is too short. Minimum {min_length} bytes required.")

    return len(issues) == 0, issues

def validate_database_url() -> Tuple[bool, List[str]]:
    """
    Validate the DATABASE_URL configuration

    Returns:
        Tuple of (is_valid, list_of_issues)
    """
    issues = []

    if not settings.DATABASE_URL:
        issues.append("DATABASE_URL is not set")
        return False, issues

    if settings.DATABASE_URL.startswith("sqlite"):
        logger.warning("DATABASE_URL points at SQLite; use PostgreSQL outside development")

    return len(issues) == 0, issues

def validate_usage_limits() -> Tuple[bool, List[str]]:
    """
    Validate the static AI usage limit tables

    Returns:
        Tuple of (is_valid, list_of_issues)
    """
    issues = validate_limit_configuration()
    return len(issues) == 0, issues

STARTUP_CHECKS = (
    ("Secret key", validate_secret_key),
    ("Database URL", validate_database_url),
    ("Usage limits", validate_usage_limits),
)

def perform_startup_validation(strict: bool = False) -> bool:
    """
    Perform all startup validations

    Args:
        strict: If True, failures raise instead of being logged

    Returns:
        True if all validations pass, False otherwise

    Raises:
        StartupValidationError: If strict and any validation fails
    """
    logger.info("Validating usage service configuration...")

    failures = []
    for name, validator in STARTUP_CHECKS:
        is_valid, issues = validator()
        if is_valid:
            logger.info(f"{name} check passed")
            continue
        for issue in issues:
            logger.error(f"{name} check failed: {issue}")
            failures.append(f"{name}: {issue}")

    if not failures:
        logger.info("Usage service configuration is valid")
        return True

    if strict:
        raise StartupValidationError(f"Startup validation failed: {'; '.join(failures)}")
    logger.error(f"Starting with {len(failures)} configuration problems; AI usage limits may not be enforced correctly")
    return False

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, validate configuration and own the usage reset scheduler"""
    Base.metadata.create_all(bind=engine)
    try:
        perform_startup_validation(strict=False)  # Don't be strict on startup
    except Exception as e:
        logger.error(f"Unexpected error during startup validation: {str(e)}")

    app.state.usage_scheduler = None
    if settings.USAGE_SCHEDULER_ENABLED:
        scheduler = UsageResetScheduler()
        scheduler.start()
        app.state.usage_scheduler = scheduler
    else:
        logger.info("Usage reset scheduler is disabled in settings")

    try:
        yield
    finally:
        scheduler = getattr(app.state, "usage_scheduler", None)
        if scheduler:
            await scheduler.stop()
            app.state.usage_scheduler = None

if __name__ == "__main__":
    # python -m app.core.startup: check configuration before deploying
    logging.basicConfig(level=logging.INFO)
    try:
        perform_startup_validation(strict=True)
    except StartupValidationError as e:
        print(str(e))
        sys.exit(1)
    print("Usage service configuration is valid")
