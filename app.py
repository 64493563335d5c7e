import logging
import os
from datetime import date
from logging.handlers import RotatingFileHandler

import click
from flask import Flask

from extensions import db, migrate
from services.calendar import BusinessCalendar


# ======================
# logging
# ======================
def configure_logging(app):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    log_dir = app.config.get("LOG_DIR", "logs")
    if not os.path.exists(log_dir):
        os.mkdir(log_dir)

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, app.config.get("LOG_FILE", "ledger.log")),
        maxBytes=1_000_000,   # 1MB
        backupCount=5
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    ))

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        root.addHandler(file_handler)


# ======================
# CLI
# ======================
def register_commands(app):
    @app.cli.command("init-db")
    def init_db_command():
        """Create all ledger tables."""
        db.create_all()
        click.echo("Ledger tables created.")

    @app.cli.command("rollover-year")
    @click.argument("from_year", type=int)
    def rollover_year_command(from_year):
        """Open next year's leave entitlements with carry-forward."""
        from jobs.year_rollover import roll_over

        created = roll_over(from_year)
        click.echo(f"Created {len(created)} entitlement(s) for {from_year + 1}.")

    @app.cli.command("expire-qualifications")
    def expire_qualifications_command():
        """Mark verified qualifications past their expiry date as expired."""
        from services.qualification_tracker import mark_expired

        expired = mark_expired(date.today())
        click.echo(f"Expired {len(expired)} qualification(s).")

    @app.cli.command("expiry-alerts")
    @click.option("--days", type=int, default=None)
    def expiry_alerts_command(days):
        """List verified qualifications expiring soon."""
        from services.reporting import expiry_alerts

        days = days if days is not None else app.config.get("QUALIFICATION_ALERT_DAYS", 30)
        for row in expiry_alerts(days, date.today()):
            click.echo(
                f"{row['expiry_date']}  {row['employee_number']}  {row['staff_name']}  "
                f"{row['qualification_type']}: {row['qualification_name']}"
            )


# ======================
# App Init
# ======================
def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or os.getenv("APP_CONFIG", "config.DevConfig"))

    if not app.testing:
        configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)

    app.extensions["ledger_calendar"] = BusinessCalendar(app.config.get("LEAVE_WEEKLY_OFF_MASK", 96))

    # models must be imported for create_all / migrations to see them
    import models  # noqa: F401

    register_commands(app)

    if app.config.get("QUALIFICATION_EXPIRY_WORKER"):
        from jobs.qualification_expiry import start_expiry_worker

        start_expiry_worker(app, app.config.get("QUALIFICATION_EXPIRY_INTERVAL_SECONDS", 6 * 60 * 60))
    return app


app = create_app()


if __name__ == "__main__":
    with app.app_context():
        db.create_all()
