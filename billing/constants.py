"""Centralized application constants — single source of truth for hardcoded values."""

# --- Session ---
COOKIE_NAME = "clinicas_session"

# --- Stripe webhook ---
SIGNATURE_HEADER = "stripe-signature"
CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type, stripe-signature"

# Webhook log lifecycle
WEBHOOK_STATUS_PROCESSING = "processing"
WEBHOOK_STATUS_SUCCESS = "success"
WEBHOOK_STATUS_ERROR = "error"
WEBHOOK_STATUSES = (WEBHOOK_STATUS_PROCESSING, WEBHOOK_STATUS_SUCCESS, WEBHOOK_STATUS_ERROR)
WEBHOOK_STALE_MESSAGE = "processing interrupted"
ERROR_MESSAGE_MAX_LENGTH = 4000

# --- Subscription lifecycle ---
ACTIVE_STATUSES = ("active", "trialing")
EXPIRING_SOON_DAYS = 7
NO_PLAN_NAME = "Sem Plano"

# --- User roles ---
ROLE_CLINIC_ADMIN = "clinic_admin"
ROLE_PROFESSIONAL = "professional"
ROLE_MASTER_ADMIN = "master_admin"

# --- Checkout ---
CHECKOUT_LOCALE = "pt-BR"

# --- Pagination ---
WEBHOOK_LOGS_PER_PAGE = 100
AUDIT_LOGS_PER_PAGE = 50
AUDIT_EXPORT_LIMIT = 10000
AUDIT_TOP_USERS = 10

# --- Financial stats ---
STRIPE_LIST_LIMIT = 100
REVENUE_WINDOW_DAYS = 30

# --- Worker ---
ARQ_MAX_JOBS = 10
ARQ_JOB_TIMEOUT = 300  # seconds (5 min)
