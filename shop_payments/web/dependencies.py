from typing import Annotated

from fastapi import Depends, Path, Request

from shop_payments.application.api_facade import ShopPaymentsFacade
from shop_payments.web.schemas import ID_PATTERN


def get_facade(request: Request) -> ShopPaymentsFacade:
    return request.app.state.facade


Facade = Annotated[ShopPaymentsFacade, Depends(get_facade)]
ShopIdPath = Annotated[str, Path(pattern=ID_PATTERN)]
