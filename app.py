import os
import sys
import logging
import uuid

from flask import Flask, request, jsonify, g, Response
from flask_wtf.csrf import CSRFProtect, generate_csrf
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from comparison import ComparisonSet
from config import default_config
from errors import (
    InvalidLocationError, LocationNotFoundError, RegionUnresolvedError,
    RuralityError, UpstreamUnavailableError,
)
from health_monitor import get_status as get_health_status
from rural_trace import TraceContext, set_trace, clear_trace
from rurality import (
    analyze, classify, csv_filename, result_to_csv, result_to_dict, share_text,
)

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # Bad or unknown location typed by a user
            if exc_type is not None and issubclass(
                exc_type, (InvalidLocationError, LocationNotFoundError, RegionUnresolvedError)
            ):
                sentry_sdk.add_breadcrumb(
                    category="location",
                    message=msg,
                    level="info",
                )
                return None
            # Upstream timeouts / request failures
            if exc_type is not None and issubclass(
                exc_type, (requests.exceptions.RequestException, UpstreamUnavailableError)
            ):
                sentry_sdk.add_breadcrumb(
                    category="upstream",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'rurality-dev-key')
if (not app.config['SECRET_KEY'] or app.config['SECRET_KEY'] == 'rurality-dev-key') and os.environ.get('FLASK_DEBUG') != '1':
    print("FATAL: SECRET_KEY is not set. Refusing to start with insecure default.", file=sys.stderr)
    print("Set SECRET_KEY in your environment or .env file.", file=sys.stderr)
    sys.exit(1)

# Behind a reverse proxy: ProxyFix rewrites request.remote_addr to the real
# client IP so both Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

# CSRF protection: validates the X-CSRFToken header on state-changing
# requests.  The dashboard fetches a token from /api/csrf-token.
csrf = CSRFProtect(app)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: each analysis fans out to several public APIs.
# In-memory storage is per-process (with 2 gunicorn workers the effective
# limit is ~2x nominal).
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_ANALYZE = os.environ.get("RATE_LIMIT_ANALYZE", "20/minute")

# ?debug=1 on /api/rurality attaches the full per-stage trace.  Off unless
# DEBUG_TRACE=true; the trace names upstream URLs and timings.
app.config["DEBUG_TRACE"] = os.environ.get("DEBUG_TRACE", "").lower() == "true"

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

if not os.environ.get("CENSUS_API_KEY"):
    logger.warning(
        "CENSUS_API_KEY is not set. "
        "ACS requests are limited to 500/day per IP without a key."
    )

# Per-process comparison set (the dashboard's "compare places" list).
comparison_set = ComparisonSet()


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _is_truthy(value) -> bool:
    return str(value or "").lower() in ("1", "true", "yes")


def _location_query():
    """Read a location from ?location= or ?lat=&lng=.

    Raises InvalidLocationError when neither form is present or the
    coordinates are not numbers.
    """
    location = request.args.get("location", "").strip()
    if location:
        return location
    lat, lng = request.args.get("lat"), request.args.get("lng")
    if lat is None or lng is None:
        raise InvalidLocationError("Provide ?location= or both ?lat= and ?lng=")
    try:
        return float(lat), float(lng)
    except ValueError:
        raise InvalidLocationError("lat and lng must be numbers")


def _run_analysis(query, strict: bool = False):
    """Run one traced analysis for the current request."""
    trace_ctx = TraceContext(trace_id=g.request_id)
    g.trace_ctx = trace_ctx
    set_trace(trace_ctx)
    try:
        return analyze(query, default_config(), require_region=strict)
    finally:
        trace_ctx.log_summary()
        clear_trace()


def _error_body(message: str, kind: str, **extra):
    body = {"error": message, "kind": kind, "request_id": getattr(g, "request_id", None)}
    body.update(extra)
    return body


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------
@app.route("/api/rurality")
@limiter.limit(RATE_LIMIT_ANALYZE)
def rurality_json():
    """Full analysis result as JSON."""
    query = _location_query()
    result = _run_analysis(query, strict=_is_truthy(request.args.get("strict")))
    body = result_to_dict(result)
    if app.config["DEBUG_TRACE"] and _is_truthy(request.args.get("debug")):
        body["trace"] = g.trace_ctx.full_trace_dict()
    return jsonify(body)


@app.route("/api/rurality.csv")
@limiter.limit(RATE_LIMIT_ANALYZE)
def rurality_csv():
    """Spreadsheet export: (metric, value, score) rows."""
    result = _run_analysis(_location_query())
    return Response(
        result_to_csv(result),
        mimetype="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename={csv_filename(result.location)}"
        },
    )


@app.route("/api/rurality/share")
@limiter.limit(RATE_LIMIT_ANALYZE)
def rurality_share():
    """One-line share text for a location's score."""
    result = _run_analysis(_location_query())
    return jsonify({
        "title": "Rurality Index Analysis",
        "text": share_text(result),
        "overall_score": result.overall_score,
        "classification": result.classification,
    })


# ---------------------------------------------------------------------------
# Comparison set
# ---------------------------------------------------------------------------
def _comparison_payload():
    return {
        "locations": comparison_set.items(),
        "capacity": comparison_set.capacity,
        "full": comparison_set.is_full(),
    }


@app.route("/api/compare", methods=["GET"])
# ?scores=1 runs one analysis per entry, so it shares the analysis limit
@limiter.limit(RATE_LIMIT_ANALYZE, override_defaults=False,
               exempt_when=lambda: not _is_truthy(request.args.get("scores")))
def compare_list():
    """List the comparison set; ?scores=1 also analyzes each entry."""
    payload = _comparison_payload()
    if _is_truthy(request.args.get("scores")):
        entries = []
        for name in payload["locations"]:
            try:
                result = _run_analysis(name)
            except RuralityError as e:
                entries.append({"location": name, "error": str(e)})
                continue
            entries.append({
                "location": name,
                "overall_score": result.overall_score,
                "classification": classify(result.overall_score),
                "sub_scores": {k: round(v, 1) for k, v in result.sub_scores.items()},
            })
        payload["entries"] = entries
    return jsonify(payload)


@app.route("/api/compare", methods=["POST"])
def compare_add():
    """Add {"location": name} to the comparison set."""
    data = request.get_json(silent=True) or {}
    name = data.get("location")
    if not isinstance(name, str):
        raise InvalidLocationError("location is required")
    name = name.strip()
    if comparison_set.add(name):
        return jsonify(_comparison_payload()), 201
    if name in comparison_set:
        return jsonify(_comparison_payload()), 200
    return jsonify(_error_body(
        f"Comparison set is full ({comparison_set.capacity} locations)",
        "comparison_full",
        **_comparison_payload(),
    )), 409


@app.route("/api/compare/<path:name>", methods=["DELETE"])
def compare_remove(name):
    if not comparison_set.remove(name):
        return jsonify(_error_body(f"{name!r} is not in the comparison set", "not_found")), 404
    return jsonify(_comparison_payload())


@app.route("/api/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header on POST/DELETE requests."""
    return jsonify({"csrf_token": generate_csrf()})


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
def _check_service_config():
    """Return (is_ok, missing_optional_keys).

    No key is strictly required: Nominatim needs none and ACS works
    without a key at a lower quota.
    """
    missing = [k for k in ("CENSUS_API_KEY", "MAPBOX_TOKEN") if not os.environ.get(k)]
    return True, missing


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Health check: config plus upstream status."""
    _, missing = _check_service_config()
    upstream = get_health_status()
    geocoders = ["nominatim"] + (["mapbox"] if os.environ.get("MAPBOX_TOKEN") else [])
    geocoding_down = all(
        upstream.get(svc, {}).get("status") == "down" for svc in geocoders
    )
    return jsonify({
        "status": "degraded" if geocoding_down else "ok",
        "missing_optional_keys": missing,
        "upstream": upstream,
    }), 503 if geocoding_down else 200


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(InvalidLocationError)
def invalid_location(e):
    return jsonify(_error_body(str(e), "invalid_location")), 400


@app.errorhandler(LocationNotFoundError)
def location_not_found(e):
    return jsonify(_error_body(str(e), "location_not_found")), 404


@app.errorhandler(RegionUnresolvedError)
def region_unresolved(e):
    return jsonify(_error_body(str(e), "region_unresolved", lat=e.lat, lng=e.lng)), 422


@app.errorhandler(UpstreamUnavailableError)
def upstream_unavailable(e):
    logger.warning("Upstream %s unavailable: %s", e.service, e)
    return jsonify(_error_body(
        "Location service is temporarily unavailable. Please try again.",
        "upstream_unavailable",
        service=e.service,
    )), 503


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify(_error_body(
        "Too many requests. Please wait and try again.", "rate_limited",
    )), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify(_error_body("Not found", "not_found")), 404


@app.errorhandler(500)
def internal_error(e):
    return jsonify(_error_body("Internal server error", "internal")), 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import atexit
    from health_monitor import start_monitor, stop_monitor
    start_monitor()
    atexit.register(stop_monitor)
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
