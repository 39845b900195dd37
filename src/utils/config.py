"""Environment-driven application configuration."""

import os


class AppConfig:
    """Centralized application settings."""

    SUPABASE_URL = os.environ.get("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

    # Table names
    TASKS_TABLE = os.environ.get("TASKS_TABLE", "tasks")
    STEPS_TABLE = os.environ.get("STEPS_TABLE", "steps")
    ACTIVITIES_TABLE = os.environ.get("ACTIVITIES_TABLE", "activities")
    NOTIFICATIONS_TABLE = os.environ.get("NOTIFICATIONS_TABLE", "notifications")
    EMAIL_OUTBOX_TABLE = os.environ.get("EMAIL_OUTBOX_TABLE", "email_outbox")
    USERS_TABLE = os.environ.get("USERS_TABLE", "users")

    # Email
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "Task Management System <no-reply@localhost>")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000")

    # Feed limits
    ACTIVITY_FEED_LIMIT = int(os.environ.get("ACTIVITY_FEED_LIMIT", "50"))
    NOTIFICATION_FEED_LIMIT = int(os.environ.get("NOTIFICATION_FEED_LIMIT", "50"))
