import os
import sys
import threading
import time
from datetime import date

# ➕ project root on PYTHONPATH
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from services.qualification_tracker import mark_expired  # noqa: E402

_EXPIRY_STARTED = False


def run_once(today=None):
    return mark_expired(today or date.today())


def _worker(app, interval_seconds):
    while True:
        try:
            with app.app_context():
                run_once()
        except Exception:
            app.logger.exception("Qualification expiry sweep failed")
        time.sleep(interval_seconds)


def start_expiry_worker(app, interval_seconds=6 * 60 * 60):
    """Daemon thread sweeping expired qualifications (once per process)."""
    global _EXPIRY_STARTED
    if _EXPIRY_STARTED:
        return
    _EXPIRY_STARTED = True
    t = threading.Thread(target=_worker, args=(app, interval_seconds), daemon=True)
    t.start()


if __name__ == "__main__":
    from app import app

    with app.app_context():
        expired = run_once()
        print(f"Expired {len(expired)} qualification(s)")
