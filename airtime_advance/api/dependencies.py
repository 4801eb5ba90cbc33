"""Dependency injection for FastAPI endpoints"""

from fastapi import Request

from airtime_advance.services.orchestrator import Orchestrator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_orchestrator(request: Request) -> Orchestrator:
    """Provide the orchestrator built at startup"""
    return request.app.state.orchestrator
