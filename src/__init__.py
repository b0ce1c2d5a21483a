"""
Pantheon Fleet Update Tool.
"""

from clients import PantheonRestClient
from config import RunConfig
from fleet import FleetResolver, SiteInventory
from gateway import PantheonGateway
from log_utils import setup_logging
from models import EnvironmentRef, UpdateJobSpec, UpdateReport
from orchestrator import UpdateOrchestrator
from queue_builder import build_queue
from updater import FleetUpdater

__all__ = [
    "PantheonRestClient",
    "RunConfig",
    "FleetResolver",
    "SiteInventory",
    "PantheonGateway",
    "setup_logging",
    "EnvironmentRef",
    "UpdateJobSpec",
    "UpdateReport",
    "UpdateOrchestrator",
    "build_queue",
    "FleetUpdater",
]
