# fishstore/api/info.py
from fastapi import APIRouter

from fishstore.api.type import StoreApi
from fishstore.types import ServiceInfo


class InfoApi(StoreApi):
    def __init__(
        self,
        info: ServiceInfo,
    ) -> None:
        self._info = info

    def create_router(self) -> APIRouter:
        router = APIRouter(tags=["information"])

        def info():
            return self._info

        router.add_api_route(
            path="/info",
            endpoint=info,
            methods=["GET"],
            name="info",
            response_model=ServiceInfo,
        )

        return router
