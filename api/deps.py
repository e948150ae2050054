# api/deps.py
"""Process-wide component wiring and the FastAPI dependencies exposing it."""
from dataclasses import dataclass
from typing import Optional

from core.config import Settings, get_settings
from core.engine import ContainerEngine
from core.git_manager import GitManager
from core.network import PortManager
from core.orchestrator import DeploymentOrchestrator
from core.registry import DeploymentRegistry
from core.secrets_manager import SecretsManager
from core.webhook import WebhookDispatcher


@dataclass
class Services:
    settings: Settings
    secrets: SecretsManager
    engine: ContainerEngine
    git_manager: GitManager
    registry: DeploymentRegistry
    orchestrator: DeploymentOrchestrator
    dispatcher: WebhookDispatcher


def build_services(settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    secrets = SecretsManager(mode=settings.secrets_mode)
    engine = ContainerEngine()
    git_manager = GitManager(base_path=settings.repos_path)
    registry = DeploymentRegistry()
    orchestrator = DeploymentOrchestrator(
        engine,
        git_manager,
        registry,
        port_manager=PortManager(start_port=settings.port_range_start),
        container_port=settings.container_port,
        operation_timeout=settings.operation_timeout,
        image_prefix=settings.image_prefix,
        stop_timeout=settings.stop_timeout,
    )
    return Services(
        settings=settings,
        secrets=secrets,
        engine=engine,
        git_manager=git_manager,
        registry=registry,
        orchestrator=orchestrator,
        dispatcher=WebhookDispatcher(orchestrator),
    )


_services: Optional[Services] = None


def get_services(reset: bool = False) -> Services:
    global _services
    if _services is None or reset:
        _services = build_services()
    return _services


def get_orchestrator() -> DeploymentOrchestrator:
    return get_services().orchestrator


def get_dispatcher() -> WebhookDispatcher:
    return get_services().dispatcher


def get_secrets() -> SecretsManager:
    return get_services().secrets
