from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from vm_monitor.services.broadcaster import WebSocketSubscriber

router = APIRouter()


@router.websocket("/ws")
async def stream(websocket: WebSocket) -> None:
    """
    Push channel for the dashboard.

    The client first receives a single `vm-info` event, then `stats` and
    `processes` on every tick until it disconnects. Messages sent by the
    client are read and ignored.
    """
    runtime = websocket.app.state.runtime

    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)

    # Onboarding before join: vm-info is always the first event on the wire
    await runtime.broadcaster.send_onboarding(subscriber, runtime.source)
    await runtime.subscriptions.join(subscriber)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        await runtime.subscriptions.leave(subscriber)
