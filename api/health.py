"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
from datetime import datetime, timezone
import json

from src.utils.config import AppConfig
from src.utils.logging_config import LoggingConfig


def health_payload() -> dict:
    """Service status. Degraded when storage credentials are missing; no network calls."""
    storage_configured = bool(AppConfig.SUPABASE_URL and AppConfig.SUPABASE_SERVICE_ROLE_KEY)
    return {
        "status": "ok" if storage_configured else "degraded",
        "service": LoggingConfig.LOG_SERVICE_NAME,
        "checks": {"storage_configured": storage_configured},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def do_GET(self):
        payload = health_payload()
        self.send_response(200 if payload["status"] == "ok" else 503)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode('utf-8'))

    def do_POST(self):
        self.do_GET()
