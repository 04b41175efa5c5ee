"""
Status endpoints for the medical ledger services.

Only reports configuration and ledger connectivity; the domain
operations are consumed in-process through ``medledger.services``.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from medledger.utils import format_timestamp


def create_app(services):
    """
    Create the FastAPI app around already-built services.

    The ledger session is closed once, when the app shuts down.
    """

    @asynccontextmanager
    async def lifespan(app):
        yield
        services.close()

    app = FastAPI(title="Medical Ledger Status API", lifespan=lifespan)
    app.state.services = services

    def contract_status():
        settings = services.settings
        return {
            "patient_identity": bool(settings.patient_identity_contract),
            "access_control": bool(settings.access_control_contract),
            "medical_records": bool(settings.medical_records_contract),
        }

    @app.get("/health")
    @app.get("/api/health")
    def health_check():
        """Configuration and connectivity check"""
        settings = services.settings
        contracts = contract_status()
        connected = services.gateway.is_connected()

        warnings = [f"{name} contract not configured" for name, ok in contracts.items() if not ok]
        if not connected:
            warnings.append("ledger network unreachable")

        return {
            "success": True,
            "timestamp": format_timestamp(int(time.time())),
            "status": "healthy" if not warnings else "warning",
            "services": {
                "ledger": {"network": settings.ledger_network, "connected": connected},
                "contracts": contracts,
            },
            "warnings": warnings,
        }

    @app.get("/contracts")
    @app.get("/api/contracts")
    def contracts_info():
        """Deployed contract addresses"""
        settings = services.settings
        return {
            "success": True,
            "network": settings.ledger_network,
            "contracts": {
                "patient_identity": settings.patient_identity_contract or None,
                "access_control": settings.access_control_contract or None,
                "medical_records": settings.medical_records_contract or None,
            },
        }

    return app
