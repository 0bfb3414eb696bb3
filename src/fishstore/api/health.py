from fastapi import APIRouter
from fastapi.responses import JSONResponse

from fishstore.api.type import StoreApi
from fishstore.database import StoreDatabase
from fishstore.types import HealthResponse, HealthStatus


class HealthApi(StoreApi):
    def __init__(
        self,
        database: StoreDatabase,
    ) -> None:
        self._database = database

    def create_router(self) -> APIRouter:
        router = APIRouter(tags=["information"])

        def health():
            if self._database.ping():
                return HealthResponse(status=HealthStatus.up)
            return JSONResponse(status_code=503, content={"status": HealthStatus.down.value})

        router.add_api_route(
            path="/health",
            endpoint=health,
            methods=["GET"],
            name="health",
            response_model=HealthResponse,
            responses={
                200: {
                    "description": "Service health status",
                    "content": {"application/json": {"example": {"status": "up"}}},
                },
                503: {"description": "Database unreachable"},
            },
        )

        return router
