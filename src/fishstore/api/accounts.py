from fastapi import APIRouter, Depends

from fishstore.accounts import AccountService
from fishstore.api.auth import Authenticator
from fishstore.api.type import StoreApi
from fishstore.types import ActionResult, EmailRequest, UserOut, UserUpdate


class AccountsApi(StoreApi):
    def __init__(
        self,
        accounts: AccountService,
        auth: Authenticator,
    ) -> None:
        self._accounts = accounts
        self._auth = auth

    def create_router(self) -> APIRouter:
        router = APIRouter(tags=["accounts"])

        signed_in = Depends(self._auth.user)

        def get_me(user: UserOut = signed_in):
            return user

        def update_me(body: UserUpdate, user: UserOut = signed_in):
            return self._accounts.update_profile(user, body)

        def password_reset(body: EmailRequest):
            return self._accounts.send_password_reset(body.email)

        def signup_confirmation(body: EmailRequest):
            return self._accounts.send_signup_confirmation(body.email)

        router.add_api_route(
            path="/me",
            endpoint=get_me,
            methods=["GET"],
            response_model=UserOut,
            name="get_me",
            summary="The signed-in user",
            responses={401: {"description": "Missing or invalid bearer token"}},
        )

        router.add_api_route(
            path="/me",
            endpoint=update_me,
            methods=["PATCH"],
            response_model=UserOut,
            name="update_me",
            summary="Update name and phone number",
            responses={401: {"description": "Missing or invalid bearer token"}},
        )

        router.add_api_route(
            path="/auth/password-reset",
            endpoint=password_reset,
            methods=["POST"],
            response_model=ActionResult,
            name="password_reset",
            summary="Email a password recovery link",
            responses={
                400: {"description": "Missing or malformed email address"},
                500: {"description": "Link could not be generated or sent"},
            },
        )

        router.add_api_route(
            path="/auth/signup-confirmation",
            endpoint=signup_confirmation,
            methods=["POST"],
            response_model=ActionResult,
            name="signup_confirmation",
            summary="Email a signup confirmation link",
            responses={
                400: {"description": "Missing or malformed email address"},
                500: {"description": "Link could not be generated or sent"},
            },
        )

        return router
