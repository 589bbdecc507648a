from fastapi import Depends, Request

from .container import ApplicationContainer


def get_container(request: Request) -> ApplicationContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Application container not initialised.")
    return container


def get_persistence_gateway(container: ApplicationContainer = Depends(get_container)):
    return container.persistence


def get_admin_auth_service(container: ApplicationContainer = Depends(get_container)):
    return container.admin_auth_service


def get_update_service(container: ApplicationContainer = Depends(get_container)):
    return container.update_service


def get_assignment_service(container: ApplicationContainer = Depends(get_container)):
    return container.assignment_service


def get_statistics_service(container: ApplicationContainer = Depends(get_container)):
    return container.statistics_service


def get_access_service(container: ApplicationContainer = Depends(get_container)):
    return container.access_service


def get_reconciliation_service(container: ApplicationContainer = Depends(get_container)):
    return container.reconciliation_service
