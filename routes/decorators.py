from functools import wraps
from flask_login import current_user
from flask import jsonify
from werkzeug.exceptions import HTTPException
from sqlalchemy import or_
from models import db, Project, ProjectAssignment, TeamMember
from routes.cycle_lock import CycleInventoryLockedError
import logging

logger = logging.getLogger(__name__)


class AccessDenied(Exception):
    """The current user may not touch the requested project or resource."""


def role_required(*roles):
    """
    Restrict a view to users with one of the given roles.
    Example: @role_required('admin')
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
            user_role = getattr(current_user, 'role', None)
            allowed = {r.lower() for r in roles}
            if user_role is None or user_role.lower() not in allowed:
                return jsonify({'status': 'error', 'message': 'You do not have permission to perform this action.'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def current_org_id():
    org_id = getattr(current_user, 'organization_id', None)
    if not org_id:
        raise AccessDenied('User is not a member of any organization')
    return org_id


def accessible_project_ids(user):
    """Project ids the user can see; None means every project in the organization."""
    if getattr(user, 'is_admin', False):
        return None
    team_ids = [tm.team_id for tm in TeamMember.query.filter_by(user_id=user.id).all()]
    conditions = [ProjectAssignment.user_id == user.id]
    if team_ids:
        conditions.append(ProjectAssignment.team_id.in_(team_ids))
    query = db.session.query(ProjectAssignment.project_id).filter(or_(*conditions))
    return {row[0] for row in query.distinct().all()}


def assert_project_access(project_id, user=None):
    """Return the Project if it belongs to the user's organization and the user may access it."""
    user = user or current_user
    org_id = getattr(user, 'organization_id', None)
    project = Project.query.filter_by(id=project_id, organization_id=org_id).first() if project_id else None
    if not project:
        raise LookupError('Project not found')
    allowed = accessible_project_ids(user)
    if allowed is not None and project.id not in allowed:
        raise AccessDenied('You do not have access to this project')
    return project


def json_errors(f):
    """
    Roll back the session and translate ledger exceptions into JSON error responses.

    CycleInventoryLockedError -> 409, AccessDenied -> 403, LookupError -> 404,
    ValueError -> 400, anything else -> 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except HTTPException:
            db.session.rollback()
            raise
        except (KeyError, IndexError):
            db.session.rollback()
            logger.exception("Unhandled lookup error in %s", f.__name__)
            return jsonify({'status': 'error', 'message': 'An unexpected error occurred'}), 500
        except CycleInventoryLockedError as e:
            db.session.rollback()
            return jsonify({'status': 'error', 'code': e.code, 'message': str(e)}), 409
        except AccessDenied as e:
            db.session.rollback()
            return jsonify({'status': 'error', 'message': str(e)}), 403
        except LookupError as e:
            db.session.rollback()
            return jsonify({'status': 'error', 'message': e.args[0] if e.args else 'Not found'}), 404
        except ValueError as e:
            db.session.rollback()
            return jsonify({'status': 'error', 'message': str(e)}), 400
        except Exception:
            db.session.rollback()
            logger.exception("Unhandled error in %s", f.__name__)
            return jsonify({'status': 'error', 'message': 'An unexpected error occurred'}), 500
    return decorated_function
