import os
import sys
import logging

from flask import Flask, jsonify
from flask_login import LoginManager
from flask_migrate import Migrate

from models import db, User, InventoryItemType
from config import Config
from extensions import limiter
from routes.utils import cache

logger = logging.getLogger(__name__)


def create_app(config_object=Config):
    # Optional: keep working dir consistent when frozen
    if getattr(sys, 'frozen', False):
        try:
            os.chdir(str(Config.BASE_DIR))
        except OSError:
            logger.exception("Failed to chdir to BASE_DIR in frozen mode")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    # Cache and rate limiter
    app.config.setdefault('CACHE_TYPE', 'SimpleCache')
    cache.init_app(app)
    limiter.init_app(app)

    from routes.projects import projects_bp
    from routes.teams import teams_bp
    from routes.inventory import inventory_bp
    from routes.production import production_bp
    from routes.cycles import cycles_bp
    from routes.products import products_bp
    from routes.expenses import expenses_bp
    from routes.sales import sales_bp
    from routes.reports import reports_bp
    for bp in (projects_bp, teams_bp, inventory_bp, production_bp, cycles_bp, products_bp, expenses_bp,
               sales_bp, reports_bp):
        app.register_blueprint(bp)

    # DB and migrations
    db.init_app(app)
    Migrate(app, db)

    # --- Login Manager ---
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        try:
            uid = int(user_id)
        except (TypeError, ValueError):
            return None
        return db.session.get(User, uid)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'status': 'error', 'message': 'Authentication required'}), 401

    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify({'status': 'error', 'message': f'Rate limit exceeded: {e.description}'}), 429

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    return app


def seed_essential_data(app):
    """Seeds the inventory item types if they are missing."""
    from routes.inventory_utils import ITEM_TYPES
    from routes.utils import clear_inventory_item_type_cache

    with app.app_context():
        existing = {t.code for t in InventoryItemType.query.all()}
        missing = [(code, name) for code, name in ITEM_TYPES if code not in existing]
        if not missing:
            return 0
        logger.info("Seeding inventory item types: %s", ', '.join(code for code, _ in missing))
        try:
            for code, name in missing:
                db.session.add(InventoryItemType(code=code, name=name))
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Error seeding inventory item types")
            raise
        clear_inventory_item_type_cache()
        return len(missing)
