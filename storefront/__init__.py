import logging

from flask import Flask, jsonify

from .config import Config
from .extensions import db, jwt, cors, migrate

logger = logging.getLogger(__name__)


def _configure_logging(app):
    level = getattr(logging, app.config.get("LOG_LEVEL", "INFO"), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("storefront").setLevel(level)
    app.logger.setLevel(level)


def create_app(config_class=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    config_class.init_app(app)
    _configure_logging(app)

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})
    migrate.init_app(app, db)

    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    from .auth import bp as auth_bp; app.register_blueprint(auth_bp)
    from .category import bp as category_bp; app.register_blueprint(category_bp)
    from .product import bp as product_bp; app.register_blueprint(product_bp)
    from .coupon import bp as coupon_bp; app.register_blueprint(coupon_bp)
    from .checkout import bp as checkout_bp; app.register_blueprint(checkout_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return jsonify(ok=True, msg="API running")

    with app.app_context():
        from . import model  # noqa: F401  (registers tables)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("blueprints: %s", sorted(app.blueprints.keys()))
            for rule in app.url_map.iter_rules():
                logger.debug("%s %s", sorted(rule.methods), rule.rule)
        db.create_all()

    return app
