from flask import Blueprint, request, jsonify
from flask_login import login_required
from models import db, Team, TeamMember, User, ProjectAssignment
from routes.decorators import json_errors, current_org_id, role_required
from routes.utils import log_action, safe_int

teams_bp = Blueprint('teams', __name__, url_prefix='/api/teams')


def _get_team(team_id):
    team = Team.query.filter_by(id=team_id, organization_id=current_org_id()).first()
    if not team:
        raise LookupError('Team not found')
    return team


def _member_dict(user):
    return {'user_id': user.id, 'username': user.username, 'email': user.email, 'role': user.role}


@teams_bp.route('', methods=['GET'])
@login_required
@json_errors
def list_teams():
    teams = Team.query.filter_by(organization_id=current_org_id()).order_by(Team.name.asc()).all()
    return jsonify({'status': 'success', 'teams': [t.to_dict() for t in teams]})


@teams_bp.route('', methods=['POST'])
@login_required
@role_required('admin')
@json_errors
def create_team():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise ValueError('Team name is required')
    team = Team(organization_id=current_org_id(), name=name)
    db.session.add(team)
    db.session.flush()
    log_action(f'Created team #{team.id} "{name}"')
    db.session.commit()
    return jsonify({'status': 'success', 'team': team.to_dict()}), 201


@teams_bp.route('/<int:team_id>', methods=['DELETE'])
@login_required
@role_required('admin')
@json_errors
def delete_team(team_id):
    team = _get_team(team_id)
    TeamMember.query.filter_by(team_id=team.id).delete()
    ProjectAssignment.query.filter_by(team_id=team.id).delete()
    db.session.delete(team)
    log_action(f'Deleted team #{team_id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Team deleted successfully'})


@teams_bp.route('/<int:team_id>/members', methods=['GET'])
@login_required
@json_errors
def list_members(team_id):
    team = _get_team(team_id)
    users = (User.query.join(TeamMember, TeamMember.user_id == User.id)
             .filter(TeamMember.team_id == team.id)
             .order_by(User.username.asc())
             .all())
    return jsonify({'status': 'success', 'members': [_member_dict(u) for u in users]})


@teams_bp.route('/<int:team_id>/members', methods=['POST'])
@login_required
@role_required('admin')
@json_errors
def add_member(team_id):
    data = request.get_json(silent=True) or {}
    team = _get_team(team_id)
    user = User.query.filter_by(id=safe_int(data.get('user_id')), organization_id=team.organization_id).first()
    if not user:
        raise LookupError('User not found')

    if TeamMember.query.filter_by(team_id=team.id, user_id=user.id).first():
        return jsonify({'status': 'success', 'member': _member_dict(user)})

    db.session.add(TeamMember(team_id=team.id, user_id=user.id))
    log_action(f'Added user {user.id} to team #{team.id}')
    db.session.commit()
    return jsonify({'status': 'success', 'member': _member_dict(user)}), 201


@teams_bp.route('/<int:team_id>/members/<int:user_id>', methods=['DELETE'])
@login_required
@role_required('admin')
@json_errors
def remove_member(team_id, user_id):
    team = _get_team(team_id)
    membership = TeamMember.query.filter_by(team_id=team.id, user_id=user_id).first()
    if not membership:
        raise LookupError('Team member not found')
    db.session.delete(membership)
    log_action(f'Removed user {user_id} from team #{team.id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Team member removed'})
