"""
Gunicorn hooks.

post_fork: each worker runs its own upstream health monitor thread.
worker_exit: that thread is stopped as the worker shuts down.
when_ready: once the master is listening, exercise the deploy end to end
with smoke_test against localhost.
"""

import logging
import os
import threading
import time

log = logging.getLogger("gunicorn.error")

# workers need a moment after the master starts listening
SMOKE_DELAY_SECONDS = 2


def _smoke(base_url: str) -> None:
    time.sleep(SMOKE_DELAY_SECONDS)
    try:
        from smoke_test import run_tests
        log.info("Smoke test against %s", base_url)
        if run_tests(base_url):
            log.info("Smoke test passed")
        else:
            log.error("Smoke test failed")
    except Exception:
        log.exception("Smoke test crashed")


def when_ready(server):
    base_url = "http://127.0.0.1:%s" % os.environ.get("PORT", "8000")
    threading.Thread(target=_smoke, args=(base_url,), name="smoke-test", daemon=True).start()


def post_fork(server, worker):
    try:
        from health_monitor import start_monitor
        start_monitor()
    except Exception:
        log.exception("Health monitor failed to start in worker %s", worker.pid)


def worker_exit(server, worker):
    from health_monitor import stop_monitor
    stop_monitor()
