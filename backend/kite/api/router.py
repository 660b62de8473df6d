from fastapi import APIRouter

from kite.api.routes import deployments, nodes, pods, resources

api_router = APIRouter(prefix="/api/v1")
# kind-specific routers first; the generic router matches any resource name
api_router.include_router(pods.router)
api_router.include_router(deployments.router)
api_router.include_router(nodes.router)
api_router.include_router(resources.router)
