from fastapi import APIRouter, Depends

from ..bridge import BridgeContext, BridgeRequest, dispatch
from ..deps import get_bridge_context

router = APIRouter(tags=["bridge"])


@router.post("/bridge")
def bridge_call(data: BridgeRequest, ctx: BridgeContext = Depends(get_bridge_context)):
    return {"ok": True, "result": dispatch(ctx, data.op, data.args)}


@router.get("/sync/status")
def sync_status(ctx: BridgeContext = Depends(get_bridge_context)):
    return dispatch(ctx, "sync_status", {})


@router.post("/sync/now")
def sync_now(ctx: BridgeContext = Depends(get_bridge_context)):
    return dispatch(ctx, "sync_now", {})
