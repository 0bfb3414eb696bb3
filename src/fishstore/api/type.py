from abc import ABC, abstractmethod

from fastapi import APIRouter


class StoreApi(ABC):
    @abstractmethod
    def create_router(self) -> APIRouter: ...
