from __future__ import annotations

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fishstore.accounts import AccountService, HostedIdentityProvider, IdentityProvider
from fishstore.api.accounts import AccountsApi
from fishstore.api.admin import AdminCatalogApi
from fishstore.api.auth import Authenticator
from fishstore.api.health import HealthApi
from fishstore.api.info import InfoApi
from fishstore.api.orders import OrdersApi
from fishstore.api.storefront import StorefrontApi
from fishstore.api.subscriptions import SubscriptionsApi
from fishstore.api.type import StoreApi
from fishstore.catalog import CatalogService
from fishstore.config import StoreSettings
from fishstore.database import SqlAlchemyStoreDatabase, StoreDatabase
from fishstore.errors import SoldOutError, StoreError
from fishstore.logging import BindRequestContextMiddleware
from fishstore.notifications import EmailClient, Notifier, SubscriptionService
from fishstore.orders import OrderService
from fishstore.types import ServiceInfo

log = structlog.get_logger(__name__)


def default_info(settings: StoreSettings) -> ServiceInfo:
    import fishstore

    return ServiceInfo(
        display_name="Kotimaista kalaa",
        version=fishstore.__version__,
        site_url=settings.site_url,
    )


def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    if isinstance(exc, SoldOutError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())
    if exc.status_code >= 500:
        log.error("request_failed", error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies and parameters get the same 400 `{"error": ...}` body as domain errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header"))
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"
    log.info("request_invalid", error=message, error_count=len(errors))
    return JSONResponse(status_code=400, content={"error": message})


def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("unhandled_error", error=repr(exc))
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


class StoreService:
    def __init__(
        self,
        settings: StoreSettings,
        database: StoreDatabase,
        identity_provider: IdentityProvider,
        email_client: EmailClient,
        info: ServiceInfo | None = None,
    ) -> None:
        self._settings = settings
        self._database = database
        self.info = info or default_info(settings)

        self.notifier = Notifier(settings, email_client)
        self.subscriptions = SubscriptionService(database, self.notifier)
        self.accounts = AccountService(database, identity_provider, self.notifier, settings.site_url)
        self.orders = OrderService(database, self.notifier)
        self.catalog = CatalogService(database, self.subscriptions, settings.timezone)
        self._auth = Authenticator(self.accounts)

    def create_fastapi(self, app: FastAPI | None = None) -> FastAPI:
        if app is None:
            app = FastAPI(title=self.info.display_name, version=self.info.version)
            app.logger = structlog.get_logger("fastapi")

        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-request-id"],
            expose_headers=["X-Request-ID"],
        )
        app.add_middleware(BindRequestContextMiddleware)
        app.add_exception_handler(StoreError, store_error_handler)
        app.add_exception_handler(RequestValidationError, request_validation_handler)
        app.add_exception_handler(Exception, unhandled_error_handler)

        router = self.create_api_routers()
        app.include_router(router)

        return app

    def create_api_routers(self) -> APIRouter:
        router = APIRouter(prefix="/api/v1")

        self._include_api(router, HealthApi(self._database))
        self._include_api(router, InfoApi(self.info))
        self._include_api(router, StorefrontApi(self.catalog))
        self._include_api(router, OrdersApi(self.orders, self._auth))
        self._include_api(router, AdminCatalogApi(self.catalog, self._auth))
        self._include_api(router, AccountsApi(self.accounts, self._auth))
        self._include_api(router, SubscriptionsApi(self.subscriptions, self._auth))

        return router

    def _include_api(self, router: APIRouter, api: StoreApi) -> None:
        router.include_router(api.create_router())


def build_service(settings: StoreSettings) -> StoreService:
    """Wire the production database, identity provider and email client."""
    return StoreService(
        settings,
        SqlAlchemyStoreDatabase(settings.database_url),
        HostedIdentityProvider(settings),
        EmailClient(settings),
    )


def create_app(settings: StoreSettings | None = None) -> FastAPI:
    return build_service(settings or StoreSettings.from_env()).create_fastapi()
