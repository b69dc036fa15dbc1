"""工具路由（负载均衡器 / 容器探活）"""
from fastapi import APIRouter

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
async def health_check() -> bool:
    """GET /api/v1/utils/health-check/，服务存活即返回 True"""
    return True
