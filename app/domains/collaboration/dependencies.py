from fastapi.requests import HTTPConnection

from app.domains.collaboration.service import SessionLifecycleManager


def get_session_manager(conn: HTTPConnection) -> SessionLifecycleManager:
    return conn.app.state.session_manager
