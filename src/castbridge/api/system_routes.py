"""
System health and maintenance API routes
"""

from fastapi import APIRouter, HTTPException
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

def create_system_routes(registry, server=None):
    """Create system monitoring routes"""
    router = APIRouter(prefix="/api/system", tags=["system"])

    @router.post("/rescan")
    async def rescan():
        """Send a discovery query right now"""
        if server is None:
            raise HTTPException(status_code=503, detail="Discovery not running")
        try:
            await server.scan_network()
            return {"message": "Discovery query sent", "timestamp": datetime.now(timezone.utc).isoformat()}
        except Exception as e:
            logger.error(f"Error triggering rescan: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/health")
    async def system_health():
        """System health check"""
        try:
            devices = await registry.get_devices()
            last_error = await registry.get_last_error()
            available = sum(1 for d in devices if d.available)

            return {
                "status": "healthy",
                "database": "connected",
                "devices": {
                    "total": len(devices),
                    "available": available,
                    "unavailable": len(devices) - available
                },
                "last_error": last_error or None,
                "services": server.get_status() if server is not None else {},
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    return router
