from datetime import date
from decimal import Decimal

import pytest

from app import create_app, seed_essential_data
from config import TestConfig
from models import (db, Organization, User, Project, ProjectAssignment, Cycle,
                    InventoryItemType, InventoryItem, InventoryItemVariant)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    seed_essential_data(app)
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def org(app):
    organization = Organization(name='Acme Farms', currency_code='USD')
    db.session.add(organization)
    db.session.commit()
    return organization


@pytest.fixture
def admin(org):
    user = User(username='admin', role='admin', organization_id=org.id)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def member(org):
    user = User(username='clerk', role='member', organization_id=org.id)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def project(org, admin):
    p = Project(organization_id=org.id, name='Bakery', created_by=admin.id)
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def make_cycle(org, project):
    def _make(number=1, start=None, end=None, budget=None, project_id=None):
        cycle = Cycle(
            organization_id=org.id,
            project_id=project_id or project.id,
            cycle_number=number,
            cycle_name=f'Cycle {number}',
            start_date=start,
            end_date=end,
            budget_allotment=budget,
        )
        db.session.add(cycle)
        db.session.commit()
        return cycle
    return _make


@pytest.fixture
def cycle(make_cycle):
    return make_cycle(1, start=date(2024, 1, 1), end=date(2024, 1, 31))


@pytest.fixture
def make_variant(org):
    """Create an inventory item with a single variant and return the variant."""
    def _make(name='Flour', type_code='RAW_MATERIAL', unit_cost=None, label='Default'):
        item_type = InventoryItemType.query.filter_by(code=type_code).one()
        item = InventoryItem(organization_id=org.id, inventory_item_type_id=item_type.id, name=name)
        variant = InventoryItemVariant(label=label,
                                       unit_cost=Decimal(str(unit_cost)) if unit_cost is not None else None)
        item.variants.append(variant)
        db.session.add(item)
        db.session.commit()
        return variant
    return _make


def login(client, user):
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True


@pytest.fixture
def client(app, admin):
    c = app.test_client()
    login(c, admin)
    return c


@pytest.fixture
def member_client(app, member):
    c = app.test_client()
    login(c, member)
    return c


@pytest.fixture
def assign(project):
    def _assign(user=None, team=None, project_id=None):
        pa = ProjectAssignment(project_id=project_id or project.id,
                               user_id=user.id if user else None,
                               team_id=team.id if team else None)
        db.session.add(pa)
        db.session.commit()
        return pa
    return _assign
