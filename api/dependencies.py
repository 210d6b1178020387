"""
Request-scoped access to the services wired up at startup.
"""

from fastapi import HTTPException, Request, status


def get_db_service(request: Request):
    db_service = getattr(request.app.state, "db_service", None)
    if db_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database service not available"
        )
    return db_service


def get_session_issuer(request: Request):
    return request.app.state.session_issuer


def get_storage(request: Request):
    # None when Drive credentials are not configured; upload routes report it
    return getattr(request.app.state, "storage", None)
