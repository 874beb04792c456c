#app/api/routers/carts.py
from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_cart_storage
from app.domain.cart import Cart
from app.domain.schemas import AddLineIn, SetQuantityIn, CartOut

router = APIRouter(prefix="/carts", tags=["carts"])


def _cart_out(device_id: str, cart: Cart) -> dict:
    return {
        "device_id": device_id,
        "lines": cart.lines,
        "total": cart.total(),
        "item_count": cart.item_count(),
    }


@router.get("/{device_id}", response_model=CartOut)
def get_cart(device_id: str, storage=Depends(get_cart_storage)):
    cart = Cart.load(storage, device_id)
    return _cart_out(device_id, cart)


@router.post("/{device_id}/items", response_model=CartOut)
def add_item(device_id: str, payload: AddLineIn, storage=Depends(get_cart_storage)):
    cart = Cart.load(storage, device_id)
    try:
        cart.add_line(payload.menu_item, payload.customizations, payload.quantity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _cart_out(device_id, cart)


@router.patch("/{device_id}/items/{index}", response_model=CartOut)
def set_quantity(device_id: str, index: int, payload: SetQuantityIn, storage=Depends(get_cart_storage)):
    cart = Cart.load(storage, device_id)
    cart.set_quantity(index, payload.quantity)
    return _cart_out(device_id, cart)


@router.delete("/{device_id}/items/{index}", response_model=CartOut)
def remove_item(device_id: str, index: int, storage=Depends(get_cart_storage)):
    cart = Cart.load(storage, device_id)
    cart.remove_line(index)
    return _cart_out(device_id, cart)


@router.delete("/{device_id}", response_model=CartOut)
def clear_cart(device_id: str, storage=Depends(get_cart_storage)):
    cart = Cart.load(storage, device_id)
    cart.clear()
    return _cart_out(device_id, cart)
