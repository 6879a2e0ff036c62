import asyncio
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from thumbreel.config import Settings
from thumbreel.render.encoder import EncodingPipeline
from thumbreel.services.account_service import Account, AccountService
from thumbreel.services.orchestrator import RenderOrchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_account_service(request: Request) -> AccountService:
    return request.app.state.accounts


def get_orchestrator(request: Request) -> RenderOrchestrator:
    return request.app.state.orchestrator


def get_encoder(request: Request) -> EncodingPipeline:
    return request.app.state.orchestrator.encoder


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Accounts = Annotated[AccountService, Depends(get_account_service)]
Orchestrator = Annotated[RenderOrchestrator, Depends(get_orchestrator)]
Encoder = Annotated[EncodingPipeline, Depends(get_encoder)]


async def get_current_account(
    settings: AppSettings,
    accounts: Accounts,
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
) -> Account:
    """Resolve the calling account from the X-User-Id header.

    Authentication happens upstream; this service trusts the header. In
    dev_mode a missing header maps to the dev user and unknown users are
    created on the free plan.
    """
    user_id = x_user_id
    if not user_id:
        if not settings.dev_mode:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing X-User-Id header",
            )
        user_id = settings.dev_user_id

    if settings.dev_mode:
        return await asyncio.to_thread(accounts.ensure_account, user_id)
    return await asyncio.to_thread(accounts.get_account, user_id)


CurrentAccount = Annotated[Account, Depends(get_current_account)]
