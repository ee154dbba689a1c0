import asyncio
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status

from order_tracking.presentation.schemas import (
    CreateOrderRequest, ErrorResponse, OrderResponse, TransitionStatusRequest, UpdateTrackingRequest
)
from order_tracking.application.create_order import CreateOrderUseCase
from order_tracking.application.get_order import (
    FindOrderUseCase, GetOrderUseCase, ListCustomerOrdersUseCase, ListOrdersUseCase
)
from order_tracking.application.interfaces import OrderFilter
from order_tracking.application.subscriptions import SubscribeToOrderUpdatesUseCase
from order_tracking.application.transition_status import TransitionOrderStatusUseCase
from order_tracking.application.update_tracking import UpdateTrackingUseCase
from order_tracking.domain.models import OrderStatus
from order_tracking.domain.exceptions import (
    ConflictError, InvalidTransitionError, OrderNotFoundError, StorageError, ValidationError
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Custom close code for "order not found" on the live feed
WS_ORDER_NOT_FOUND = 4404


def _retry_options(state) -> dict:
    return {
        "max_retries": state.settings.STORAGE_MAX_RETRIES,
        "retry_delay": state.settings.STORAGE_RETRY_DELAY,
    }


# Use case factories
def get_create_order_use_case(request: Request):
    state = request.app.state
    return CreateOrderUseCase(
        state.unit_of_work,
        state.publishers,
        order_number_prefix=state.settings.ORDER_NUMBER_PREFIX,
        **_retry_options(state),
    )


def get_transition_use_case(request: Request):
    state = request.app.state
    return TransitionOrderStatusUseCase(state.unit_of_work, state.publishers, **_retry_options(state))


def get_update_tracking_use_case(request: Request):
    state = request.app.state
    return UpdateTrackingUseCase(state.unit_of_work, state.publishers, **_retry_options(state))


def get_get_order_use_case(request: Request):
    return GetOrderUseCase(request.app.state.unit_of_work, **_retry_options(request.app.state))


def get_find_order_use_case(request: Request):
    return FindOrderUseCase(request.app.state.unit_of_work, **_retry_options(request.app.state))


def get_list_orders_use_case(request: Request):
    return ListOrdersUseCase(request.app.state.unit_of_work, **_retry_options(request.app.state))


def get_list_customer_orders_use_case(request: Request):
    return ListCustomerOrdersUseCase(request.app.state.unit_of_work, **_retry_options(request.app.state))


def _unavailable(e: StorageError) -> HTTPException:
    logger.error(f"Order store unavailable: {e}")
    return HTTPException(status_code=503, detail="Order store is temporarily unavailable")


@router.post(
    "/orders",
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED
)
async def create_order(
    request: CreateOrderRequest,
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Checkout completion"""
    try:
        order = await use_case(request.model_dump())
        return OrderResponse.from_domain(order)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise _unavailable(e)


@router.get("/orders", response_model=List[OrderResponse], responses={503: {"model": ErrorResponse}})
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    use_case: ListOrdersUseCase = Depends(get_list_orders_use_case)
):
    """Admin orders table: ?status=Shipped&search=jane"""
    try:
        order_status = OrderStatus.parse(status_filter) if status_filter else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        orders = await use_case(OrderFilter(status=order_status, search=search))
        return [OrderResponse.from_domain(order) for order in orders]
    except StorageError as e:
        raise _unavailable(e)


@router.get(
    "/orders/track/{query}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def track_order(
    query: str,
    use_case: FindOrderUseCase = Depends(get_find_order_use_case)
):
    """Customer tracking by id, order number or tracking number"""
    try:
        order = await use_case(query)
        return OrderResponse.from_domain(order)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except StorageError as e:
        raise _unavailable(e)


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order(
    order_id: str,
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except StorageError as e:
        raise _unavailable(e)


@router.patch(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    }
)
async def transition_status(
    order_id: str,
    request: TransitionStatusRequest,
    use_case: TransitionOrderStatusUseCase = Depends(get_transition_use_case)
):
    """Admin status selector"""
    try:
        order = await use_case(order_id, request.status, request.description, request.location)
        return OrderResponse.from_domain(order)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=f"This order can no longer be updated: {e}")
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=f"Order was changed by someone else, reload and retry: {e}")
    except StorageError as e:
        raise _unavailable(e)


@router.patch(
    "/orders/{order_id}/tracking",
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}
)
async def update_tracking(
    order_id: str,
    request: UpdateTrackingRequest,
    use_case: UpdateTrackingUseCase = Depends(get_update_tracking_use_case)
):
    try:
        order = await use_case(order_id, request.tracking_number, request.estimated_delivery)
        return OrderResponse.from_domain(order)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        raise _unavailable(e)


@router.get("/customers/{customer_id}/orders", response_model=List[OrderResponse])
async def list_customer_orders(
    customer_id: str,
    use_case: ListCustomerOrdersUseCase = Depends(get_list_customer_orders_use_case)
):
    try:
        orders = await use_case(customer_id)
        return [OrderResponse.from_domain(order) for order in orders]
    except StorageError as e:
        raise _unavailable(e)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except (WebSocketDisconnect, RuntimeError):
        pass


async def _stream(websocket: WebSocket, queue: asyncio.Queue, subscription, stop_on_terminal: bool) -> None:
    disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while subscription.active or not queue.empty():
            next_update = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({next_update, disconnect}, return_when=asyncio.FIRST_COMPLETED)
            if next_update not in done:
                next_update.cancel()
                return
            order = next_update.result()
            await websocket.send_json(OrderResponse.from_domain(order).model_dump(mode="json"))
            if stop_on_terminal and order.is_terminal():
                break
        await websocket.close()
    finally:
        subscription.unsubscribe()
        disconnect.cancel()


@router.websocket("/orders/updates")
async def all_order_updates(websocket: WebSocket):
    """Admin live feed of every order change"""
    queue: asyncio.Queue = asyncio.Queue()
    subscription = websocket.app.state.broker.subscribe_all(queue.put_nowait)
    await websocket.accept()
    await _stream(websocket, queue, subscription, stop_on_terminal=False)


@router.websocket("/orders/{order_id}/updates")
async def order_updates(websocket: WebSocket, order_id: str):
    """Live snapshots for one order; closes after a terminal snapshot"""
    state = websocket.app.state
    queue: asyncio.Queue = asyncio.Queue()
    use_case = SubscribeToOrderUpdatesUseCase(state.unit_of_work, state.broker, **_retry_options(state))
    # Subscribed before accept: nothing committed after the handshake is missed
    try:
        subscription = await use_case(order_id, queue.put_nowait)
    except StorageError as e:
        logger.error(f"Could not subscribe to order {order_id}: {e}")
        await websocket.close(code=1011)
        return

    await websocket.accept()
    if not subscription.active and queue.empty():
        await websocket.close(code=WS_ORDER_NOT_FOUND)
        return
    await _stream(websocket, queue, subscription, stop_on_terminal=True)
