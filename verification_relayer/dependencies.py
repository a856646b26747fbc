"""
FastAPI dependency providers.

The supervisor and settings are attached to app.state by create_app() and
handed to routes from there.
"""

from fastapi import Depends, Request

from .config import Settings
from .status import StatusReporter
from .supervisor import RelayerSupervisor


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_supervisor(request: Request) -> RelayerSupervisor:
    return request.app.state.supervisor


def get_reporter(supervisor: RelayerSupervisor = Depends(get_supervisor)) -> StatusReporter:
    return StatusReporter(supervisor)
