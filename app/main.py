from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from app.core.config import settings
from app.core.exceptions import UnknownFeature, UsageLimitExceeded
from app.core.startup import lifespan
from app.api.usage import usage_router
from app.api.admin import admin_router
from app.middleware.rate_limit import limiter, rate_limit_exceeded_handler, create_rate_limit_middleware
from app.middleware.usage_limits import unknown_feature_handler, usage_limit_exceeded_handler

app = FastAPI(
    title="HealthHire AI Usage API",
    description="AI usage monitoring, rate limiting and reset service for the HealthHire portal",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter
app.state.usage_scheduler = None

# Configure rate limiting
if settings.RATE_LIMIT_ENABLED:
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_exception_handler(UsageLimitExceeded, usage_limit_exceeded_handler)
app.add_exception_handler(UnknownFeature, unknown_feature_handler)

# Add rate limiting middleware if enabled
rate_limit_middleware = create_rate_limit_middleware()
if rate_limit_middleware:
    app.add_middleware(rate_limit_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
    expose_headers=["X-Usage-Daily", "X-Usage-Weekly", "X-Usage-Monthly", "X-Usage-Warning", "Retry-After"],
)

app.include_router(usage_router, prefix="/api/usage", tags=["usage"])
app.include_router(admin_router, prefix="/api/admin", tags=["admin"])

@app.get("/")
async def root():
    return {"message": "HealthHire AI Usage API"}

@app.get("/health")
async def health_check():
    return {"status": "healthy"}
