from fastapi import APIRouter
from app.api.v1.routes import (
    auth,
    servers,
    store,
    admin_panel,
    admin_servers,
    admin_store,
    admin_rewards,
    admin_users,
    rewards,
)

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(servers.router, prefix="/servers", tags=["servers"])
api_router.include_router(store.router, prefix="/store", tags=["store"])
api_router.include_router(rewards.router, prefix="/rewards", tags=["rewards"])

api_router.include_router(admin_panel.router, prefix="/admin/panel", tags=["admin-panel"])
api_router.include_router(admin_servers.router, prefix="/admin/servers", tags=["admin-servers"])
api_router.include_router(admin_store.router, prefix="/admin/store", tags=["admin-store"])
api_router.include_router(admin_rewards.router, prefix="/admin/rewards", tags=["admin-rewards"])
api_router.include_router(admin_users.router, prefix="/admin", tags=["admin-users"])
