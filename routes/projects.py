from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from models import db, Project, ProjectAssignment, User, Team, Cycle, Sale, Expense, Product
from routes.decorators import json_errors, assert_project_access, accessible_project_ids, current_org_id, role_required
from routes.utils import log_action, safe_int
from extensions import limiter
import logging

logger = logging.getLogger(__name__)

projects_bp = Blueprint('projects', __name__, url_prefix='/api/projects')


def clean_currency_code(value):
    """Upper-case ISO 4217 code, None for blank; ValueError for anything else."""
    code = (value or '').strip().upper() if isinstance(value, str) else value
    if not code:
        return None
    if not isinstance(code, str) or len(code) != 3 or not code.isalpha():
        raise ValueError('currency_code must be a 3-letter ISO currency code')
    return code


def project_currency(project):
    """The project's own currency, else its organization's, else the configured default."""
    if project.currency_code:
        return project.currency_code
    if project.organization is not None and project.organization.currency_code:
        return project.organization.currency_code
    return current_app.config.get('DEFAULT_CURRENCY', 'USD')


def project_to_dict(project):
    data = project.to_dict()
    data['effective_currency_code'] = project_currency(project)
    return data


def _get_project_for_admin(project_id):
    project = Project.query.filter_by(id=project_id, organization_id=current_org_id()).first()
    if not project:
        raise LookupError('Project not found')
    return project


@projects_bp.route('', methods=['GET'])
@login_required
@json_errors
def list_projects():
    query = Project.query.filter(Project.organization_id == current_org_id())
    allowed = accessible_project_ids(current_user)
    if allowed is not None:
        query = query.filter(Project.id.in_(allowed or [0]))
    projects = query.order_by(Project.name.asc(), Project.id.asc()).all()
    return jsonify({'status': 'success', 'projects': [project_to_dict(p) for p in projects]})


@projects_bp.route('/<int:project_id>', methods=['GET'])
@login_required
@json_errors
def get_project(project_id):
    return jsonify({'status': 'success', 'project': project_to_dict(assert_project_access(project_id))})


@projects_bp.route('', methods=['POST'])
@login_required
@role_required('admin')
@limiter.limit("30 per minute")
@json_errors
def create_project():
    data = request.get_json(silent=True) or {}
    name = (data.get('project_name') or data.get('name') or '').strip()
    if not name:
        raise ValueError('project_name is required')

    project = Project(
        organization_id=current_org_id(),
        name=name,
        description=data.get('description') or None,
        currency_code=clean_currency_code(data.get('currency_code')),
        created_by=current_user.id,
    )
    db.session.add(project)
    db.session.flush()
    log_action(f'Created project #{project.id} "{name}"')
    db.session.commit()
    return jsonify({'status': 'success', 'project': project_to_dict(project)}), 201


@projects_bp.route('/<int:project_id>', methods=['PUT', 'PATCH'])
@login_required
@role_required('admin')
@json_errors
def update_project(project_id):
    data = request.get_json(silent=True) or {}
    project = _get_project_for_admin(project_id)

    if 'project_name' in data or 'name' in data:
        name = (data.get('project_name', data.get('name')) or '').strip()
        if not name:
            raise ValueError('project_name cannot be empty')
        project.name = name
    if 'description' in data:
        project.description = data.get('description') or None
    if 'currency_code' in data:
        project.currency_code = clean_currency_code(data.get('currency_code'))

    log_action(f'Updated project #{project.id}')
    db.session.commit()
    return jsonify({'status': 'success', 'project': project_to_dict(project)})


@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@login_required
@role_required('admin')
@json_errors
def delete_project(project_id):
    project = _get_project_for_admin(project_id)
    for model, label in ((Cycle, 'cycles'), (Sale, 'sales'), (Expense, 'expenses')):
        if model.query.filter_by(project_id=project.id).first():
            raise ValueError(f'Project still has {label}; delete them first')

    Product.query.filter_by(project_id=project.id).update({'project_id': None})
    ProjectAssignment.query.filter_by(project_id=project.id).delete()
    db.session.delete(project)
    log_action(f'Deleted project #{project_id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Project deleted successfully'})


@projects_bp.route('/<int:project_id>/assignments', methods=['GET'])
@login_required
@json_errors
def list_assignments(project_id):
    project = assert_project_access(project_id)
    rows = ProjectAssignment.query.filter_by(project_id=project.id).order_by(ProjectAssignment.id.asc()).all()
    return jsonify({'status': 'success', 'assignments': [a.to_dict() for a in rows]})


@projects_bp.route('/<int:project_id>/assignments', methods=['POST'])
@login_required
@role_required('admin')
@json_errors
def create_assignment(project_id):
    """Grant one user, or every member of one team, access to the project."""
    data = request.get_json(silent=True) or {}
    project = _get_project_for_admin(project_id)
    org_id = project.organization_id

    user_id = safe_int(data.get('user_id'))
    team_id = safe_int(data.get('team_id'))
    if bool(user_id) == bool(team_id):
        raise ValueError('Provide exactly one of user_id or team_id')
    if user_id and not User.query.filter_by(id=user_id, organization_id=org_id).first():
        raise LookupError('User not found')
    if team_id and not Team.query.filter_by(id=team_id, organization_id=org_id).first():
        raise LookupError('Team not found')

    existing = ProjectAssignment.query.filter_by(project_id=project.id, user_id=user_id, team_id=team_id).first()
    if existing:
        return jsonify({'status': 'success', 'assignment': existing.to_dict()})

    assignment = ProjectAssignment(project_id=project.id, user_id=user_id, team_id=team_id)
    db.session.add(assignment)
    db.session.flush()
    target = f'user {user_id}' if user_id else f'team {team_id}'
    log_action(f'Assigned {target} to project #{project.id}')
    db.session.commit()
    return jsonify({'status': 'success', 'assignment': assignment.to_dict()}), 201


@projects_bp.route('/<int:project_id>/assignments/<int:assignment_id>', methods=['DELETE'])
@login_required
@role_required('admin')
@json_errors
def delete_assignment(project_id, assignment_id):
    project = _get_project_for_admin(project_id)
    assignment = ProjectAssignment.query.filter_by(id=assignment_id, project_id=project.id).first()
    if not assignment:
        raise LookupError('Assignment not found')
    db.session.delete(assignment)
    log_action(f'Removed assignment #{assignment_id} from project #{project.id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Assignment removed'})
