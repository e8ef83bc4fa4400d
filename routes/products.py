from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from models import db, Product, ProductVariant
from routes.decorators import json_errors, assert_project_access, accessible_project_ids, current_org_id
from routes.inventory_utils import create_inventory_item, FINISHED_GOODS
from routes.utils import log_action, safe_int, optional_decimal, paginate_query, get_inventory_item_type_id
from extensions import limiter
import logging

logger = logging.getLogger(__name__)

products_bp = Blueprint('products', __name__, url_prefix='/api/products')


def _clean_variants(raw_variants):
    cleaned = []
    for raw in raw_variants or []:
        if not isinstance(raw, dict):
            continue
        label = raw.get('label') if isinstance(raw.get('label'), str) else None
        sku = raw.get('sku') if isinstance(raw.get('sku'), str) else None
        if not label and not sku:
            continue
        cleaned.append({
            'label': label,
            'sku': sku,
            'unit_cost': raw.get('unit_cost'),
            'selling_price': raw.get('selling_price'),
            'quantity_in_stock': safe_int(raw.get('quantity_in_stock'), 0) or 0,
        })
    return cleaned


def find_product_variant(organization_id, product_id, variant_id):
    """ProductVariant of the organization's product, or LookupError."""
    variant = (ProductVariant.query
               .join(Product, Product.id == ProductVariant.product_id)
               .filter(ProductVariant.id == variant_id,
                       ProductVariant.product_id == product_id,
                       Product.organization_id == organization_id)
               .first())
    if not variant:
        raise LookupError('Product variant not found')
    return variant


def create_product(organization_id, name, variants=None, project_id=None, sku=None, category=None,
                   unit_cost=None, selling_price=None, reorder_level=None, quantity_in_stock=0,
                   created_by=None):
    """
    Create a Product plus its FINISHED_GOODS inventory item, one inventory
    variant per product variant (or a Default one), and link them up.
    """
    if not name or not str(name).strip():
        raise ValueError('product_name is required')

    variants = _clean_variants(variants)
    product = Product(
        organization_id=organization_id,
        project_id=project_id,
        name=str(name).strip(),
        sku=sku,
        category=category,
        unit_cost=unit_cost,
        selling_price=selling_price,
        reorder_level=safe_int(reorder_level),
        quantity_in_stock=safe_int(quantity_in_stock, 0) or 0,
    )
    db.session.add(product)

    item = create_inventory_item(
        organization_id, get_inventory_item_type_id(FINISHED_GOODS), product.name,
        variants=[{'label': v['label'], 'sku': v['sku'], 'unit_cost': v['unit_cost'],
                   'selling_price': v['selling_price']} for v in variants],
        sku=sku,
        default_purchase_unit_cost=product.unit_cost,
        default_sale_price=product.selling_price,
        project_id=project_id,
        created_by=created_by,
    )
    product.inventory_item_id = item.id
    product.inventory_item_variant_id = item.variants[0].id

    # every cleaned variant has a label or sku, so inventory variants line up one-to-one
    for v, inv_variant in zip(variants, item.variants):
        product.variants.append(ProductVariant(
            label=v['label'],
            sku=v['sku'],
            unit_cost=optional_decimal(v['unit_cost']),
            selling_price=optional_decimal(v['selling_price']),
            quantity_in_stock=v['quantity_in_stock'],
            inventory_item_variant_id=inv_variant.id,
        ))
    db.session.flush()
    return product


@products_bp.route('', methods=['GET'])
@login_required
@json_errors
def list_products():
    org_id = current_org_id()
    query = Product.query.filter(Product.organization_id == org_id)
    project_id = safe_int(request.args.get('project_id'))
    if project_id:
        assert_project_access(project_id)
        query = query.filter(Product.project_id == project_id)
    else:
        allowed = accessible_project_ids(current_user)
        if allowed is not None:
            query = query.filter(Product.project_id.in_(allowed or [0]))

    search = (request.args.get('search') or '').strip()
    if search:
        query = query.filter((Product.name.ilike(f'%{search}%')) | (Product.sku.ilike(f'%{search}%')))

    pagination = paginate_query(query.order_by(Product.name.asc(), Product.id.asc()), per_page=50)
    return jsonify({
        'status': 'success',
        'products': [p.to_dict() for p in pagination.items],
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
    })


@products_bp.route('/<int:product_id>', methods=['GET'])
@login_required
@json_errors
def get_product(product_id):
    product = Product.query.filter_by(id=product_id, organization_id=current_org_id()).first()
    if not product:
        raise LookupError('Product not found')
    if product.project_id:
        assert_project_access(product.project_id)
    return jsonify({'status': 'success', 'product': product.to_dict()})


@products_bp.route('', methods=['POST'])
@login_required
@limiter.limit("60 per minute")
@json_errors
def add_product():
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}
    project_id = safe_int(data.get('project_id'))
    if project_id:
        assert_project_access(project_id)

    product = create_product(
        org_id,
        data.get('product_name') or data.get('name'),
        variants=data.get('variants') if isinstance(data.get('variants'), list) else None,
        project_id=project_id,
        sku=data.get('sku') or None,
        category=data.get('category') or None,
        unit_cost=data.get('unit_cost'),
        selling_price=data.get('selling_price'),
        reorder_level=data.get('reorder_level'),
        quantity_in_stock=data.get('quantity_in_stock'),
        created_by=current_user.id,
    )
    log_action(f'Added product "{product.name}" with {len(product.variants)} variant(s)')
    db.session.commit()
    return jsonify({'status': 'success', 'product': product.to_dict()}), 201
