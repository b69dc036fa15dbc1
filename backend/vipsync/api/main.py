"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中，在 vipsync/main.py 中以 /api/v1 前缀注册。

- webhook: 支付通知
- admin: 管理员操作（重新处理支付、权限补发、系统状态）
- cron: 定时任务触发
- subscription: 结账与订阅状态
- utils: 健康检查
"""
from fastapi import APIRouter

from vipsync.api.routes import admin, cron, subscription, utils, webhook

api_router = APIRouter()

api_router.include_router(webhook.router)  # /webhook/*
api_router.include_router(admin.router)  # /admin/*
api_router.include_router(cron.router)  # /cron/*
api_router.include_router(subscription.router)  # /subscriptions/*
api_router.include_router(utils.router)  # /utils/*
