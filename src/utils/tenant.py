"""
Tenant resolution for API requests.

The owning org comes from the ``org_id`` claim of an (optional) JWT, else
from the ``X-Org-Id`` header. Requests without either are unscoped.
"""

import logging
from flask import request
from flask_jwt_extended import verify_jwt_in_request, get_jwt, get_jwt_identity

from src.services.sequence_engine.errors import NotFoundError

logger = logging.getLogger(__name__)


def _optional_jwt():
    try:
        return verify_jwt_in_request(optional=True) is not None
    except Exception as e:
        logger.warning(f"Ignoring invalid JWT: {str(e)}")
        return False


def get_request_org_id():
    """Org of the current request, or None."""
    if _optional_jwt():
        org_id = get_jwt().get('org_id')
        if org_id:
            return str(org_id)
    return request.headers.get('X-Org-Id') or None


def get_request_user_id():
    """Identity of the JWT holder, or the ``X-User-Id`` header."""
    if _optional_jwt():
        identity = get_jwt_identity()
        if identity:
            return str(identity)
    return request.headers.get('X-User-Id') or None


def org_matches(resource_org_id):
    """True when the request may see a resource owned by ``resource_org_id``."""
    org_id = get_request_org_id()
    return org_id is None or resource_org_id is None or resource_org_id == org_id


def ensure_org_access(resource, resource_name, resource_id):
    """Hide resources of other orgs behind a 404."""
    if resource is None or not org_matches(getattr(resource, 'org_id', None)):
        raise NotFoundError(resource_name, resource_id)
    return resource
