from fastapi import APIRouter

from shop_payments.web.dependencies import Facade, ShopIdPath
from shop_payments.web.schemas import CreatePaymentRequest, RegisterTerminalRequest


router = APIRouter(prefix="/terminal", tags=["terminal"])


@router.post("/register")
async def register_terminal(body: RegisterTerminalRequest, facade: Facade, test: bool = False):
    return await facade.register_terminal(body.shop_id, body.registration_code, test=test)


@router.get("/status/{shop_id}")
async def terminal_status(shop_id: ShopIdPath, facade: Facade, test: bool = False):
    return await facade.terminal_status(shop_id, test=test)


@router.post("/create-payment")
async def create_payment(body: CreatePaymentRequest, facade: Facade, test: bool = False):
    return await facade.create_payment(body.invoice_id, body.shop_id, test=test)
