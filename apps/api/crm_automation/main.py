"""FastAPI application entry point."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from crm_automation.core.config import settings
from crm_automation.core.rate_limit import limiter
from crm_automation.db.session import engine
from crm_automation.routers import automations, internal, webhooks

logger = logging.getLogger(__name__)


def _init_sentry() -> None:
    """Error tracking outside dev when SENTRY_DSN is set."""
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Provider tokens and mailbox content stay out of Sentry
    )
    logger.info("Sentry initialized")


_init_sentry()

app = FastAPI(
    title="CRM Automation API",
    description="Trigger/action automations over Gmail and ClickUp",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Session cookie
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Inbound provider events: direct webhooks, ClickUp, Gmail Pub/Sub
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(automations.router)
# Scheduled jobs, protected by INTERNAL_SECRET
app.include_router(internal.router)


@app.get("/health")
def health():
    """Liveness plus database connectivity."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
