from fastapi import APIRouter

from chat_gateway.api.deps import RecorderDep

router = APIRouter(tags=["analytics"])


@router.get("/analytics")
async def read_analytics(recorder: RecorderDep):
    return await recorder.get_analytics()


@router.get("/dashboard")
async def read_dashboard(recorder: RecorderDep):
    return await recorder.get_dashboard()
