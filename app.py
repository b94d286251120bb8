from flask import Flask, jsonify
from urllib.parse import quote_plus
import sys
import os

from extensions import db, socketio
from flask_migrate import Migrate

# Models to ensure they are registered with SQLAlchemy
from models.device import Device
from models.beacon import Beacon
from models.blindspot import (
    BlindSpotIncidence,
    BlindSpotCallHistory,
    BlindSpotSmsHistory,
    BlindSpotLastSms,
)
# Blueprints
from routes.telemetry_routes import telemetry_bp
from routes.blindspot_routes import blindspot_bp

from incidence_engine import init_engine

# -----------------------------
# APP INITIALIZATION
# -----------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

migrate = Migrate()


def _database_uri():
    db_uri = os.environ.get("SQLALCHEMY_DATABASE_URI") or os.environ.get("DATABASE_URL")
    if db_uri:
        return db_uri
    db_user = os.environ.get("DB_USER", "facilities")
    db_pass = os.environ.get("DB_PASSWORD")
    db_host = os.environ.get("DB_HOST", "localhost")
    db_name = os.environ.get("DB_NAME", "facilities")
    if db_pass:
        return f"postgresql://{db_user}:{quote_plus(db_pass)}@{db_host}/{db_name}"
    return f"sqlite:///{os.path.join(BASE_DIR, 'facilities.db')}"


def _load_env_config(app):
    env = os.environ.get

    app.config["SQLALCHEMY_DATABASE_URI"] = _database_uri()
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Blind-spot detection
    app.config["BLINDSPOT_COOLDOWN_SECONDS"] = int(env("BLINDSPOT_COOLDOWN_SECONDS", 35))
    app.config["BLINDSPOT_RSSI_THRESHOLD"] = int(env("BLINDSPOT_RSSI_THRESHOLD", -90))
    app.config["BLINDSPOT_MIN_SMS_INTERVAL"] = int(env("BLINDSPOT_MIN_SMS_INTERVAL", 35))
    app.config["BLINDSPOT_TIMEZONE"] = env("BLINDSPOT_TIMEZONE", "America/Santiago")

    # Cellular modem (HiLink web API)
    app.config["MODEM_URL"] = env("MODEM_URL", "http://192.168.8.1")
    app.config["MODEM_HOST"] = env("MODEM_HOST", "192.168.8.1")
    app.config["MODEM_TIMEOUT"] = float(env("MODEM_TIMEOUT", 15))

    # Modem processing cadence, seconds
    app.config["DISPATCH_PROBE_DELAY"] = float(env("DISPATCH_PROBE_DELAY", 1))
    app.config["DISPATCH_ACTIVATION_DELAY"] = float(env("DISPATCH_ACTIVATION_DELAY", 2))
    app.config["DISPATCH_CONFIRMATION_DELAY"] = float(env("DISPATCH_CONFIRMATION_DELAY", 5))
    app.config["DISPATCH_RECIPIENT_DELAY"] = float(env("DISPATCH_RECIPIENT_DELAY", 10))
    app.config["DISPATCH_WORKERS"] = int(env("DISPATCH_WORKERS", 4))

    # SMS targets
    app.config["SMS_ACTIVATION_NUMBER"] = env("SMS_ACTIVATION_NUMBER", "")
    app.config["SMS_ACTIVATION_MESSAGE"] = env("SMS_ACTIVATION_MESSAGE", "")
    app.config["SMS_CONFIRMATION_NUMBER"] = env("SMS_CONFIRMATION_NUMBER", "")
    app.config["SMS_CONFIRMATION_MESSAGE"] = env("SMS_CONFIRMATION_MESSAGE", "")
    app.config["SMS_ALERT_RECIPIENTS"] = env("SMS_ALERT_RECIPIENTS", "")
    app.config["BLINDSPOT_SMS_CONFIG_FILE"] = env("BLINDSPOT_SMS_CONFIG_FILE")

    # Email
    app.config["EMAIL_PROVIDER"] = env("EMAIL_PROVIDER")
    app.config["EMAIL_SENDER"] = env("EMAIL_SENDER", "")
    app.config["EMAIL_RECIPIENTS"] = env("EMAIL_RECIPIENTS", "")
    app.config["EMAIL_TIMEOUT"] = float(env("EMAIL_TIMEOUT", 15))
    app.config["SENDGRID_API_KEY"] = env("SENDGRID_API_KEY")
    app.config["SMTP_HOST"] = env("SMTP_HOST")
    app.config["SMTP_PORT"] = int(env("SMTP_PORT", 25))
    app.config["SMTP_SECURITY"] = env("SMTP_SECURITY", "None")
    app.config["SMTP_USERNAME"] = env("SMTP_USERNAME")
    app.config["SMTP_PASSWORD"] = env("SMTP_PASSWORD")

    # Ingestion
    app.config["TELEMETRY_API_KEY"] = env("TELEMETRY_API_KEY")


def create_app(test_config=None, **engine_overrides):
    app = Flask(__name__)
    app.secret_key = (
        os.environ.get("FLASK_SECRET_KEY")
        or os.environ.get("SECRET_KEY")
        or os.urandom(32)
    )

    _load_env_config(app)
    if test_config:
        app.config.update(test_config)

    # Init DB + Migration
    db.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(app)

    # Register Blueprints
    app.register_blueprint(telemetry_bp)
    app.register_blueprint(blindspot_bp)

    engine_overrides.setdefault("emit", socketio.emit)
    init_engine(app, **engine_overrides)

    @app.route("/health")
    def health():
        return jsonify({"ok": True})

    return app


app = create_app()


# Dev mode only
if __name__ == '__main__':
    socketio.run(app, host="127.0.0.1", port=5050, debug=True)
