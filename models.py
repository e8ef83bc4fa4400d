from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime
from sqlalchemy.orm import validates
from decimal import Decimal, ROUND_HALF_UP, getcontext
from sqlalchemy.types import TypeDecorator, Numeric as SA_Numeric
import logging


db = SQLAlchemy()

getcontext().prec = 28


class Money(TypeDecorator):
    """
    SQLAlchemy TypeDecorator to store Decimal values in a NUMERIC/DECIMAL column.
    - Python value: decimal.Decimal (quantized to 2 decimal places, ROUND_HALF_UP)
    - DB value: Decimal stored in NUMERIC(18,2)
    """
    impl = SA_Numeric(precision=18, scale=2)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            try:
                # Use str() to avoid binary-float surprises
                value = Decimal(str(value))
            except Exception:
                raise ValueError(f"Cannot convert {value!r} to Decimal")
        return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            if isinstance(value, Decimal):
                return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
            # Convert via str to avoid float precision surprises (e.g., 123.45000000001)
            return Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        except Exception:
            logging.exception("Money.process_result_value: failed to parse DB value %r (type=%s)", value, type(value))
            raise

    @property
    def python_type(self):
        return Decimal


def money_str(value):
    """Render a Money value for JSON; None stays None."""
    if value is None:
        return None
    return format(value, '0.2f')


# --- Tenancy -----------------------------------------------------------------

class Organization(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    currency_code = db.Column(db.String(3), nullable=True)  # None: DEFAULT_CURRENCY from config
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL", use_alter=True), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(50), nullable=False, default='member')  # 'admin' or 'member'
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=True)
    organization = db.relationship('Organization', foreign_keys=[organization_id])
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_admin(self):
        return (self.role or '').lower() == 'admin'


class Team(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'name': self.name,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class TeamMember(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id', ondelete="CASCADE"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('team_id', 'user_id', name='uq_team_member'),
    )


class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    currency_code = db.Column(db.String(3), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    organization = db.relationship('Organization')

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'name': self.name,
            'description': self.description,
            'currency_code': self.currency_code,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    __table_args__ = (
        db.Index('idx_project_org', 'organization_id'),
    )


class ProjectAssignment(db.Model):
    """Grants a user, or every member of a team, access to a project."""
    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="CASCADE"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="CASCADE"), nullable=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id', ondelete="CASCADE"), nullable=True)

    def to_dict(self):
        return {'id': self.id, 'project_id': self.project_id, 'user_id': self.user_id, 'team_id': self.team_id}

    __table_args__ = (
        db.Index('idx_assignment_project', 'project_id'),
    )


# --- Budget cycles -----------------------------------------------------------

class Cycle(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="CASCADE"), nullable=False)
    project = db.relationship('Project')
    cycle_number = db.Column(db.Integer, nullable=True)
    cycle_name = db.Column(db.String(200), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    budget_allotment = db.Column(Money(), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    carry_forward_from_cycle_id = db.Column(db.Integer, db.ForeignKey('cycle.id', ondelete="SET NULL"), nullable=True)
    opening_balance_posted_at = db.Column(db.DateTime, nullable=True)
    opening_balance_posted_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    inventory_locked_at = db.Column(db.DateTime, nullable=True)
    inventory_locked_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)

    @property
    def is_inventory_locked(self):
        return self.inventory_locked_at is not None

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'project_id': self.project_id,
            'cycle_number': self.cycle_number,
            'cycle_name': self.cycle_name,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'budget_allotment': money_str(self.budget_allotment),
            'carry_forward_from_cycle_id': self.carry_forward_from_cycle_id,
            'opening_balance_posted_at': self.opening_balance_posted_at.isoformat() if self.opening_balance_posted_at else None,
            'inventory_locked_at': self.inventory_locked_at.isoformat() if self.inventory_locked_at else None,
            'inventory_locked_by': self.inventory_locked_by,
        }

    __table_args__ = (
        db.Index('idx_cycle_project', 'organization_id', 'project_id'),
        db.Index('idx_cycle_inventory_locked_at', 'inventory_locked_at'),
        db.Index('idx_cycle_carry_forward_from', 'carry_forward_from_cycle_id'),
    )


class CycleBudgetTransaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="CASCADE"), nullable=False)
    cycle_id = db.Column(db.Integer, db.ForeignKey('cycle.id', ondelete="CASCADE"), nullable=False)
    type = db.Column(db.String(30), nullable=False)  # ALLOTMENT_SET, BUDGET_ADJUSTMENT
    amount_delta = db.Column(Money(), nullable=False)
    budget_before = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    budget_after = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    notes = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'cycle_id': self.cycle_id,
            'type': self.type,
            'amount_delta': money_str(self.amount_delta),
            'budget_before': money_str(self.budget_before),
            'budget_after': money_str(self.budget_after),
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# --- Inventory ledger --------------------------------------------------------

class InventoryItemType(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class InventoryItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    inventory_item_type_id = db.Column(db.Integer, db.ForeignKey('inventory_item_type.id'), nullable=False)
    item_type = db.relationship('InventoryItemType')
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="SET NULL"), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(255))
    uom = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    default_purchase_unit_cost = db.Column(Money(), nullable=True)
    default_sale_price = db.Column(Money(), nullable=True)
    reorder_level = db.Column(db.Integer, nullable=True)
    description = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    variants = db.relationship('InventoryItemVariant', back_populates='item',
                               cascade='all, delete-orphan', order_by='InventoryItemVariant.id')

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'inventory_item_type_id': self.inventory_item_type_id,
            'type_code': self.item_type.code if self.item_type else None,
            'type_name': self.item_type.name if self.item_type else None,
            'project_id': self.project_id,
            'name': self.name,
            'sku': self.sku,
            'uom': self.uom,
            'is_active': self.is_active,
            'default_purchase_unit_cost': money_str(self.default_purchase_unit_cost),
            'default_sale_price': money_str(self.default_sale_price),
            'reorder_level': self.reorder_level,
            'description': self.description,
        }

    __table_args__ = (
        db.Index('idx_inventory_item_org', 'organization_id'),
        db.Index('idx_inventory_item_type', 'inventory_item_type_id'),
    )


class InventoryItemVariant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey('inventory_item.id', ondelete="CASCADE"), nullable=False)
    item = db.relationship('InventoryItem', back_populates='variants')
    label = db.Column(db.String(255))
    sku = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    unit_cost = db.Column(Money(), nullable=True)
    selling_price = db.Column(Money(), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'inventory_item_id': self.inventory_item_id,
            'label': self.label,
            'sku': self.sku,
            'is_active': self.is_active,
            'unit_cost': money_str(self.unit_cost),
            'selling_price': money_str(self.selling_price),
        }

    __table_args__ = (
        db.Index('idx_inventory_variant_item', 'inventory_item_id'),
    )


class InventoryBalance(db.Model):
    """On-hand quantity and moving-average cost of one variant in one project cycle."""
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="CASCADE"), nullable=False)
    cycle_id = db.Column(db.Integer, db.ForeignKey('cycle.id', ondelete="CASCADE"), nullable=False)
    inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id', ondelete="CASCADE"), nullable=False)
    variant = db.relationship('InventoryItemVariant')
    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    avg_unit_cost = db.Column(Money(), nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'project_id': self.project_id,
            'cycle_id': self.cycle_id,
            'inventory_item_variant_id': self.inventory_item_variant_id,
            'quantity_on_hand': self.quantity_on_hand,
            'avg_unit_cost': money_str(self.avg_unit_cost),
        }

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'project_id', 'cycle_id', 'inventory_item_variant_id',
                            name='inventory_balances_unique_bin'),
        db.Index('idx_inventory_balance_project_cycle', 'project_id', 'cycle_id'),
        db.Index('idx_inventory_balance_variant', 'inventory_item_variant_id'),
    )


class InventoryItemTransaction(db.Model):
    """Append-only movement ledger; every balance change has exactly one row here."""
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="CASCADE"), nullable=False)
    cycle_id = db.Column(db.Integer, db.ForeignKey('cycle.id', ondelete="CASCADE"), nullable=False)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey('inventory_item.id', ondelete="CASCADE"), nullable=False)
    item = db.relationship('InventoryItem')
    inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id', ondelete="CASCADE"), nullable=False)
    variant = db.relationship('InventoryItemVariant')
    transaction_type = db.Column(db.String(50), nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(Money(), nullable=True)
    source_type = db.Column(db.String(50), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<InventoryItemTransaction {self.id}: {self.transaction_type} variant {self.inventory_item_variant_id} {self.quantity_delta:+d}>'

    def to_dict(self):
        item = self.item
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'project_id': self.project_id,
            'cycle_id': self.cycle_id,
            'inventory_item_id': self.inventory_item_id,
            'inventory_item_variant_id': self.inventory_item_variant_id,
            'item_name': item.name if item else None,
            'type_code': item.item_type.code if item and item.item_type else None,
            'variant_label': self.variant.label if self.variant else None,
            'variant_sku': self.variant.sku if self.variant else None,
            'transaction_type': self.transaction_type,
            'quantity_delta': self.quantity_delta,
            'unit_cost': money_str(self.unit_cost),
            'source_type': self.source_type,
            'source_id': self.source_id,
            'notes': self.notes,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    __table_args__ = (
        db.Index('idx_inventory_tx_org', 'organization_id'),
        db.Index('idx_inventory_tx_project_cycle', 'project_id', 'cycle_id'),
        db.Index('idx_inventory_tx_variant', 'inventory_item_variant_id'),
        db.Index('idx_inventory_tx_created_at', 'created_at'),
        db.Index('idx_inventory_tx_source', 'source_type', 'source_id'),
    )


class ProductionOrder(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="CASCADE"), nullable=False)
    cycle_id = db.Column(db.Integer, db.ForeignKey('cycle.id', ondelete="CASCADE"), nullable=False)
    status = db.Column(db.String(30), nullable=False, default='DRAFT')
    output_inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id'), nullable=False)
    output_quantity = db.Column(db.Integer, nullable=False)
    output_unit_cost = db.Column(Money(), nullable=True)
    notes = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    inputs = db.relationship('ProductionOrderInput', back_populates='order',
                             cascade='all, delete-orphan', order_by='ProductionOrderInput.id')

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'project_id': self.project_id,
            'cycle_id': self.cycle_id,
            'status': self.status,
            'output_inventory_item_variant_id': self.output_inventory_item_variant_id,
            'output_quantity': self.output_quantity,
            'output_unit_cost': money_str(self.output_unit_cost),
            'notes': self.notes,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'inputs': [line.to_dict() for line in self.inputs],
        }

    __table_args__ = (
        db.Index('idx_production_order_org', 'organization_id'),
        db.Index('idx_production_order_project_cycle', 'project_id', 'cycle_id'),
    )


class ProductionOrderInput(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    production_order_id = db.Column(db.Integer, db.ForeignKey('production_order.id', ondelete="CASCADE"), nullable=False)
    order = db.relationship('ProductionOrder', back_populates='inputs')
    input_inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id'), nullable=False)
    quantity_required = db.Column(db.Integer, nullable=False)
    unit_cost_override = db.Column(Money(), nullable=True)
    notes = db.Column(db.Text)

    def to_dict(self):
        return {
            'id': self.id,
            'production_order_id': self.production_order_id,
            'input_inventory_item_variant_id': self.input_inventory_item_variant_id,
            'quantity_required': self.quantity_required,
            'unit_cost_override': money_str(self.unit_cost_override),
            'notes': self.notes,
        }


# --- Sales side --------------------------------------------------------------

class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="SET NULL"), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(100), nullable=True)
    unit_cost = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    selling_price = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    quantity_in_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey('inventory_item.id', ondelete="SET NULL"), nullable=True)
    inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id', ondelete="SET NULL"), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    variants = db.relationship('ProductVariant', back_populates='product',
                               cascade='all, delete-orphan', order_by='ProductVariant.id')

    def is_low_stock(self):
        return self.reorder_level is not None and self.quantity_in_stock <= self.reorder_level

    @validates('unit_cost', 'selling_price')
    def validate_prices(self, key, value):
        """Coerce and validate price fields. Accepts strings like '1,234.56'."""
        if value is None or (isinstance(value, str) and value.strip() == ''):
            return Decimal('0.00')
        try:
            d = Decimal(str(value).strip().replace(',', ''))
        except Exception:
            raise ValueError(f'{key} must be a numeric value (got {value!r})')
        if d < 0:
            raise ValueError(f'{key} cannot be negative')
        return d.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'project_id': self.project_id,
            'name': self.name,
            'sku': self.sku,
            'category': self.category,
            'unit_cost': money_str(self.unit_cost),
            'selling_price': money_str(self.selling_price),
            'quantity_in_stock': self.quantity_in_stock,
            'low': self.is_low_stock(),
            'inventory_item_id': self.inventory_item_id,
            'inventory_item_variant_id': self.inventory_item_variant_id,
            'is_active': self.is_active,
            'variants': [v.to_dict() for v in self.variants],
        }

    __table_args__ = (
        db.Index('idx_product_org', 'organization_id'),
        db.Index('idx_product_inventory_variant', 'inventory_item_variant_id'),
    )


class ProductVariant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id', ondelete="CASCADE"), nullable=False)
    product = db.relationship('Product', back_populates='variants')
    label = db.Column(db.String(200), nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    unit_cost = db.Column(Money(), nullable=True)
    selling_price = db.Column(Money(), nullable=True)
    quantity_in_stock = db.Column(db.Integer, nullable=False, default=0)
    inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id', ondelete="SET NULL"), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'label': self.label,
            'sku': self.sku,
            'unit_cost': money_str(self.unit_cost),
            'selling_price': money_str(self.selling_price),
            'quantity_in_stock': self.quantity_in_stock,
            'inventory_item_variant_id': self.inventory_item_variant_id,
        }


class Sale(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="SET NULL"), nullable=True)
    cycle_id = db.Column(db.Integer, db.ForeignKey('cycle.id', ondelete="SET NULL"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id', ondelete="SET NULL"), nullable=True)
    variant_id = db.Column(db.Integer, db.ForeignKey('product_variant.id', ondelete="SET NULL"), nullable=True)
    inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id', ondelete="SET NULL"), nullable=True)
    customer_name = db.Column(db.String(200), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_cost = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    price = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    cash_at_hand = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    balance = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, completed
    sale_date = db.Column(db.DateTime, default=datetime.utcnow)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'project_id': self.project_id,
            'cycle_id': self.cycle_id,
            'product_id': self.product_id,
            'variant_id': self.variant_id,
            'inventory_item_variant_id': self.inventory_item_variant_id,
            'customer': self.customer_name,
            'quantity': self.quantity,
            'unit_cost': money_str(self.unit_cost),
            'price': money_str(self.price),
            'amount': money_str(self.amount),
            'cash_at_hand': money_str(self.cash_at_hand),
            'balance': money_str(self.balance),
            'status': self.status,
            'sale_date': self.sale_date.isoformat() if self.sale_date else None,
        }

    __table_args__ = (
        db.Index('idx_sale_org_project', 'organization_id', 'project_id'),
        db.Index('idx_sale_cycle', 'cycle_id'),
        db.Index('idx_sale_date', 'sale_date'),
    )


class ExpenseCategory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="CASCADE"), nullable=True)
    category_name = db.Column(db.String(200), nullable=False)
    is_cogs = db.Column(db.Boolean, nullable=False, default=False)


class Expense(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id', ondelete="SET NULL"), nullable=True)
    cycle_id = db.Column(db.Integer, db.ForeignKey('cycle.id', ondelete="SET NULL"), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey('expense_category.id', ondelete="SET NULL"), nullable=True)
    category = db.relationship('ExpenseCategory')
    expense_name = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    amount = db.Column(Money(), nullable=False, default=Decimal('0.00'))
    expense_date = db.Column(db.DateTime, default=datetime.utcnow)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id', ondelete="SET NULL"), nullable=True)
    variant_id = db.Column(db.Integer, db.ForeignKey('product_variant.id', ondelete="SET NULL"), nullable=True)
    inventory_item_variant_id = db.Column(db.Integer, db.ForeignKey('inventory_item_variant.id', ondelete="SET NULL"), nullable=True)
    inventory_quantity = db.Column(db.Integer, nullable=True)
    inventory_unit_cost = db.Column(Money(), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_inventory_purchase(self):
        return bool(self.inventory_quantity and self.inventory_quantity > 0)

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'project_id': self.project_id,
            'cycle_id': self.cycle_id,
            'category_id': self.category_id,
            'expense_name': self.expense_name,
            'description': self.description,
            'amount': money_str(self.amount),
            'expense_date': self.expense_date.isoformat() if self.expense_date else None,
            'product_id': self.product_id,
            'variant_id': self.variant_id,
            'inventory_item_variant_id': self.inventory_item_variant_id,
            'inventory_quantity': self.inventory_quantity,
            'inventory_unit_cost': money_str(self.inventory_unit_cost),
        }

    __table_args__ = (
        db.Index('idx_expense_org_project', 'organization_id', 'project_id'),
        db.Index('idx_expense_cycle', 'cycle_id'),
    )


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete="SET NULL"))
    user = db.relationship('User')
    action = db.Column(db.String(255), nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
    ip_address = db.Column(db.String(45))

    def __repr__(self):
        username = self.user.username if self.user else 'System'
        return f'<AuditLog {self.timestamp} - {username}: {self.action}>'

    __table_args__ = (
        db.Index('idx_auditlog_user_id', 'user_id'),
        db.Index('idx_auditlog_timestamp', 'timestamp'),
    )
