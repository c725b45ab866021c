import os
import subprocess
import click
from pathlib import Path
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.extensions import db, migrate, cors
from app.models import Category, User
from app.segments.segment_auth import auth_bp
from app.segments.segment_users import users_bp
from app.segments.segment_categories import categories_bp, create_category
from app.segments.segment_listings import listings_bp, reviews_bp
from app.segments.segment_conversations import conversations_bp
from app.segments.segment_messages import messages_bp
from app.segments.segment_follow import follow_bp
from app.segments.segment_notifications import notifications_bp
from app.segments.segment_reports import reports_bp
from app.segments.segment_version import version_bp
from app.segments.segment_contact import contact_bp
from app.integrations.mail.factory import email_health
from app.integrations.media.factory import media_health
from app.utils.jwt_utils import decode_token, get_bearer_token
from app.utils.observability import init_sentry, install_request_observers
from app.utils.rate_limit import (
    build_rate_limit_subject,
    check_limit,
    limiter_stats,
    rate_limit_active,
    rate_limited_response,
)


STARTER_CATEGORIES = (
    ("مركبات", "Vehicles", "car", (("سيارات", "Cars"), ("دراجات نارية", "Motorcycles"), ("قطع غيار", "Spare Parts"))),
    ("عقارات", "Real Estate", "home", (("شقق للبيع", "Apartments for Sale"), ("شقق للإيجار", "Apartments for Rent"), ("أراضي", "Land"))),
    ("إلكترونيات", "Electronics", "smartphone", (("موبايلات", "Mobile Phones"), ("حواسيب", "Computers"), ("تلفزيونات", "TVs"))),
    ("أثاث", "Furniture", "sofa", (("غرف نوم", "Bedrooms"), ("مطابخ", "Kitchens"))),
    ("أزياء", "Fashion", "shirt", (("رجالي", "Men"), ("نسائي", "Women"), ("أطفال", "Kids"))),
    ("خدمات", "Services", "tool", ()),
)


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("RENDER_GIT_COMMIT", "GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        repo_root = Path(__file__).resolve().parents[1]
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _seraj_env() -> str:
    return (os.getenv("SERAJ_ENV", "dev") or "dev").strip().lower()


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = _seraj_env()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    # Basic config
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["JSON_AS_ASCII"] = False
    app.config["MAX_CONTENT_LENGTH"] = _env_int("MAX_CONTENT_LENGTH_MB", 50, minimum=1, maximum=1024) * 1024 * 1024

    # Ensure instance dir exists for SQLite paths
    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    # Database config
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = "sqlite:///instance/seraj.db"
    # Hosted Postgres URLs still use the legacy scheme name.
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    if database_url == "sqlite:///instance/seraj.db":
        canonical_path = os.path.join(instance_dir, "seraj.db")
        database_url = f"sqlite:///{canonical_path.replace(os.sep, '/')}"
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url

    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            int(engine_options.get("pool_size", 0) or 0),
            int(engine_options.get("max_overflow", 0) or 0),
            int(engine_options.get("pool_timeout", 0) or 0),
            int(engine_options.get("pool_recycle", 0) or 0),
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        code = int(error.code or 500)
        message = error.description or error.name
        if code == 404:
            message = "Route not found"
        elif code == 413:
            message = "Request body too large"
        payload = {
            "ok": False,
            "error": error.name,
            "message": message,
            "status": code,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), code

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        try:
            db.session.rollback()
        except SQLAlchemyError:
            app.logger.exception("unhandled_exception_rollback_failed")
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
        }
        if request.path.startswith("/api/"):
            payload["status"] = 500
            rid = (getattr(g, "request_id", "") or "").strip()
            if rid:
                payload["trace_id"] = rid
        return jsonify(payload), 500

    # Register API routes
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(listings_bp)
    app.register_blueprint(reviews_bp)
    app.register_blueprint(conversations_bp)
    app.register_blueprint(messages_bp)
    app.register_blueprint(follow_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(version_bp)
    app.register_blueprint(contact_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg

        payload = {
            "ok": True,
            "service": "seraj-backend",
            "env": env,
            "db": db_state,
            "git_sha": _resolve_git_sha(),
            "alembic_head": _resolve_alembic_head(),
            "integrations": {"email": email_health(), "media": media_health()},
            "rate_limit": limiter_stats(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({
            "ok": True,
            "service": "seraj-backend",
            "message": "Seraj API is running",
            "env": env,
        })

    @app.get("/api/build-info")
    def build_info():
        return jsonify({
            "ok": True,
            "alembic_head": _resolve_alembic_head(),
            "git_sha": _resolve_git_sha(),
        })

    _tables_ready = {"done": False}

    @app.before_request
    def _ensure_tables_once():
        if _tables_ready["done"]:
            return
        _tables_ready["done"] = True
        if (os.getenv("AUTO_CREATE_TABLES") or ("0" if env in ("prod", "production") else "1")).strip() != "1":
            return
        try:
            db.create_all()
        except SQLAlchemyError:
            app.logger.exception("auto_create_tables_failed")

    @app.before_request
    def _capture_auth_context():
        g.auth_user_id = None
        g.auth_role = None
        token = get_bearer_token(request.headers.get("Authorization", ""))
        if not token:
            return
        payload = decode_token(token)
        if not payload:
            return
        try:
            uid = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.auth_user_id = uid
        try:
            user = db.session.get(User, uid)
        except SQLAlchemyError:
            db.session.rollback()
            return
        if user:
            g.auth_role = (getattr(user, "role", None) or "user").strip().lower()
            if (os.getenv("SENTRY_DSN") or "").strip():
                import sentry_sdk

                sentry_sdk.set_user({"id": str(uid)})
                sentry_sdk.set_tag("auth_role", g.auth_role)

    @app.before_request
    def _global_rate_limit_guard():
        if not rate_limit_active():
            return None
        method = (request.method or "GET").strip().upper()
        if method == "OPTIONS":
            return None
        path = (request.path or "").strip()
        if not path.startswith("/api/"):
            return None

        if path.startswith("/api/auth"):
            subject = build_rate_limit_subject(scope="ip", user_id=None, request_obj=request)
            ok_minute, retry_minute = check_limit(
                f"tier:auth:minute:{subject}",
                limit=_env_int("RATE_LIMIT_AUTH_PER_MINUTE", 20, minimum=1, maximum=10000),
                window_seconds=60,
            )
            if not ok_minute:
                return rate_limited_response(retry_minute)
            ok_hour, retry_hour = check_limit(
                f"tier:auth:hour:{subject}",
                limit=_env_int("RATE_LIMIT_AUTH_PER_HOUR", 100, minimum=1, maximum=100000),
                window_seconds=3600,
            )
            if not ok_hour:
                return rate_limited_response(retry_hour)
            return None

        user_id = getattr(g, "auth_user_id", None)
        scope = "user" if user_id is not None else "ip"
        subject = build_rate_limit_subject(
            scope=scope,
            user_id=int(user_id) if user_id is not None else None,
            request_obj=request,
        )
        if method == "GET":
            limit = _env_int("RATE_LIMIT_BROWSE_PER_MINUTE", 120, minimum=1, maximum=100000)
            tier = "browse"
        else:
            limit = _env_int("RATE_LIMIT_WRITE_PER_MINUTE", 60, minimum=1, maximum=100000)
            tier = "write"
        ok, retry_after = check_limit(f"tier:{tier}:{method}:{path}:{subject}", limit=limit, window_seconds=60)
        if not ok:
            return rate_limited_response(retry_after)
        return None

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        allow = (os.getenv("ALLOW_ADMIN_BOOTSTRAP") or "").strip() == "1"
        if _seraj_env() not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or SERAJ_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        u = User.query.filter_by(email=email).first()
        try:
            if u:
                u.set_password(password)
                u.role = "admin"
                u.is_email_verified = True
            else:
                local = email.split("@")[0] or "admin"
                u = User(first_name=local[:30], last_name="Admin", email=email, role="admin", is_email_verified=True)
                u.set_password(password)
                db.session.add(u)
            db.session.commit()
            click.echo(f"admin_bootstrap_ok {u.email}")
        except SQLAlchemyError as e:
            db.session.rollback()
            raise click.ClickException("Failed to bootstrap admin.") from e

    @app.cli.command("seed-categories")
    def seed_categories():
        created = 0
        try:
            for name_ar, name_en, icon, children in STARTER_CATEGORIES:
                root = Category.query.filter_by(name_en=name_en, parent_id=None).first()
                if root is None:
                    root = create_category(name_ar=name_ar, name_en=name_en, icon=icon)
                    created += 1
                for child_ar, child_en in children:
                    if Category.query.filter_by(name_en=child_en, parent_id=int(root.id)).first() is None:
                        create_category(name_ar=child_ar, name_en=child_en, parent_id=int(root.id))
                        created += 1
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise click.ClickException("Failed to seed categories.") from e
        click.echo(f"seed_categories_ok created={created}")

    return app
