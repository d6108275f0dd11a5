from fastapi import APIRouter

from shop_payments.web.dependencies import Facade, ShopIdPath
from shop_payments.web.schemas import AutoWithdrawRequest, ShopRequest


router = APIRouter(tags=["connect"])


@router.post("/connect/create-account")
async def create_account(body: ShopRequest, facade: Facade):
    return await facade.create_account(body.shop_id)


@router.post("/connect/account-status")
async def account_status(body: ShopRequest, facade: Facade):
    return await facade.account_status(body.shop_id)


@router.post("/stripe-connect")
async def onboarding_link(body: ShopRequest, facade: Facade):
    return await facade.onboarding_link(body.shop_id)


@router.post("/stripe-connect/{shop_id}")
async def onboarding_link_for_shop(shop_id: ShopIdPath, facade: Facade):
    return await facade.onboarding_link(shop_id)


@router.api_route("/stripe-balance/{shop_id}", methods=["GET", "POST"])
async def balance(shop_id: ShopIdPath, facade: Facade):
    return await facade.balance(shop_id)


@router.post("/stripe-request-payout/{shop_id}")
async def request_payout(shop_id: ShopIdPath, facade: Facade):
    return await facade.request_payout(shop_id)


@router.post("/stripe-auto-withdraw/{shop_id}")
async def auto_withdraw(shop_id: ShopIdPath, body: AutoWithdrawRequest, facade: Facade):
    return await facade.set_auto_withdraw(shop_id, body.action)
