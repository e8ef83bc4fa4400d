from flask import request
from models import db, AuditLog, InventoryItemType
from functools import lru_cache
from flask_caching import Cache
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, date
import logging
from sqlalchemy import func

cache = Cache()


def to_decimal(value):
    """
    Coerce value (None, float, int, str, Decimal) -> Decimal quantized to 2dp.
    - Accepts strings with commas "1,234.56" and parentheses for negatives "(1,234.56)".
    - Returns Decimal('0.00') for invalid inputs (fail-safe).
    """
    if value is None or value == '':
        return Decimal('0.00')
    if isinstance(value, Decimal):
        return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    if isinstance(value, bool):
        return Decimal('0.00')
    if isinstance(value, int):
        return Decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    if isinstance(value, float):
        # Convert float via str to avoid binary float artifacts
        try:
            return Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        except Exception:
            return Decimal('0.00')
    try:
        if isinstance(value, str):
            s = value.strip().replace(',', '')
            if s.startswith('(') and s.endswith(')'):
                s = '-' + s[1:-1]
            return Decimal(s).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        return Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    except Exception:
        return Decimal('0.00')


def optional_decimal(value):
    """Like to_decimal, but keeps None/'' as None so "no cost given" survives."""
    if value is None or (isinstance(value, str) and value.strip() == ''):
        return None
    return to_decimal(value)


def safe_int(value, default=None):
    try:
        if value is None or (isinstance(value, str) and value.strip() == ''):
            return default
        if isinstance(value, bool):
            return default
        if isinstance(value, float):
            if not value.is_integer():
                return default
            return int(value)
        return int(value)
    except (ValueError, TypeError):
        return default


def parse_date(value, field='date'):
    """'YYYY-MM-DD' (or an ISO datetime) -> date; None/'' -> None; anything else raises ValueError."""
    if value is None or (isinstance(value, str) and value.strip() == ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f'{field} must be a date in YYYY-MM-DD format')


def parse_datetime(value, field='date'):
    """Like parse_date but keeps the time when one is given."""
    if value is None or (isinstance(value, str) and value.strip() == ''):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).strip().replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        raise ValueError(f'{field} must be an ISO date or datetime')


def paginate_query(query, per_page=20):
    """Paginate SQLAlchemy query based on ?page= parameter.

    Returns a Flask-SQLAlchemy Pagination object.
    """
    try:
        page = int(request.args.get('page', 1))
        if page < 1:
            page = 1
    except (ValueError, TypeError):
        page = 1

    try:
        per_page = int(request.args.get('per_page', per_page))
    except (ValueError, TypeError):
        pass
    per_page = max(1, min(per_page, 200))

    if not hasattr(query, 'paginate'):
        raise RuntimeError("paginate_query: provided query object does not support paginate().")
    try:
        return query.paginate(page=page, per_page=per_page, error_out=False)
    except Exception as e:
        logging.exception("Error while paginating query: %s", e)
        raise


def log_action(action_description, user=None):
    """
    Create an AuditLog row for the action_description.

    - Does not commit (caller controls transaction).
    - Never raises on logging failures; logs internal exception instead to avoid breaking user flows.
    """
    try:
        user_to_log = user
        if user_to_log is None:
            try:
                from flask_login import current_user
                if getattr(current_user, 'is_authenticated', False):
                    user_to_log = current_user
            except Exception:
                user_to_log = None

        try:
            ip_addr = request.remote_addr
        except RuntimeError:
            # outside a request context
            ip_addr = None

        log_entry = AuditLog(
            user_id=(user_to_log.id if user_to_log else None),
            organization_id=getattr(user_to_log, 'organization_id', None),
            action=(str(action_description) if action_description is not None else '')[:255],
            ip_address=ip_addr
        )
        db.session.add(log_entry)
        return log_entry
    except Exception:
        logging.exception("Failed to create audit log for action: %s", action_description)
        return None


def _prefer_memoize(timeout_seconds=3600):
    def _decorator(fn):
        try:
            if cache and hasattr(cache, 'memoize'):
                return cache.memoize(timeout_seconds)(fn)
        except Exception:
            logging.exception("_prefer_memoize: flask-caching could not wrap %s", fn.__name__)
        return lru_cache(maxsize=128)(fn)
    return _decorator


@_prefer_memoize(timeout_seconds=3600)
def get_inventory_item_type_id(code):
    """
    Retrieve the inventory item type id for a type code (RAW_MATERIAL, ...).

    - Case-insensitive lookup.
    - Memoized via flask-caching (NullCache in tests).
    - Raises LookupError if the type is not seeded.
    """
    if not code:
        raise LookupError("get_inventory_item_type_id: type code is required")

    code_norm = str(code).strip().upper()
    item_type = InventoryItemType.query.filter(func.upper(InventoryItemType.code) == code_norm).first()
    if not item_type:
        logging.error("get_inventory_item_type_id: inventory item type '%s' not found.", code_norm)
        raise LookupError(f"Inventory item type '{code_norm}' not found.")
    return item_type.id


def clear_inventory_item_type_cache(code=None):
    """Invalidate cached entries for get_inventory_item_type_id."""
    try:
        if cache and hasattr(cache, 'delete_memoized'):
            if code is not None:
                cache.delete_memoized(get_inventory_item_type_id, code)
            else:
                cache.delete_memoized(get_inventory_item_type_id)
    except Exception:
        logging.exception("clear_inventory_item_type_cache: failed to clear flask cache for %r", code)

    clear_fn = getattr(get_inventory_item_type_id, 'cache_clear', None)
    if callable(clear_fn):
        clear_fn()
