from fastapi import APIRouter, Depends

from fishstore.api.auth import Authenticator
from fishstore.api.type import StoreApi
from fishstore.notifications import SubscriptionService
from fishstore.types import BroadcastResult, EmailRequest, SubscribeResponse, SubscriptionOut, UserOut


class SubscriptionsApi(StoreApi):
    def __init__(
        self,
        subscriptions: SubscriptionService,
        auth: Authenticator,
    ) -> None:
        self._subscriptions = subscriptions
        self._auth = auth

    def create_router(self) -> APIRouter:
        router = APIRouter(tags=["subscriptions"])

        admin = Depends(self._auth.admin)

        def subscribe(body: EmailRequest):
            return self._subscriptions.subscribe(body.email)

        def list_subscribers(user: UserOut = admin):
            return self._subscriptions.list_subscribers()

        def broadcast(user: UserOut = admin):
            return self._subscriptions.broadcast_new_catch()

        router.add_api_route(
            path="/subscriptions",
            endpoint=subscribe,
            methods=["POST"],
            response_model=SubscribeResponse,
            name="subscribe",
            summary="Join the new-catch mailing list",
            responses={
                400: {"description": "Missing or malformed email address"},
                500: {"description": "Welcome email could not be sent"},
            },
        )

        router.add_api_route(
            path="/admin/subscriptions",
            endpoint=list_subscribers,
            methods=["GET"],
            response_model=list[SubscriptionOut],
            name="list_subscribers",
            summary="Mailing list subscribers",
        )

        router.add_api_route(
            path="/admin/subscriptions/$broadcast",
            endpoint=broadcast,
            methods=["POST"],
            response_model=BroadcastResult,
            response_model_exclude_none=True,
            name="broadcast_new_catch",
            summary="Send the new-catch email to every subscriber",
            responses={
                200: {
                    "content": {
                        "application/json": {
                            "example": {"message": "Sent 3 of 3 notifications", "successful": 3, "failed": 0}
                        }
                    }
                }
            },
        )

        return router
