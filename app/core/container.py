from dataclasses import dataclass

from ..application.services.access_service import AccessService
from ..application.services.admin_auth_service import AdminAuthService
from ..application.services.assignment_service import AssignmentService
from ..application.services.reconciliation_service import ReconciliationService, ReconciliationWorker
from ..application.services.statistics_service import StatisticsService
from ..application.services.subscription_update_service import SubscriptionUpdateService
from .config import Settings
from ..domain.ports.persistence import PersistenceGateway


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    admin_auth_service: AdminAuthService
    update_service: SubscriptionUpdateService
    assignment_service: AssignmentService
    statistics_service: StatisticsService
    access_service: AccessService
    reconciliation_service: ReconciliationService
    reconciliation_worker: ReconciliationWorker
