import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rail_exchange.db")
RUN_MIGRATIONS = os.getenv("RUN_MIGRATIONS", "0") == "1"

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# ✅ Frontend
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# When a product has no Stripe price configured, activate it immediately
# instead of sending the user to Checkout.
ALLOW_TEST_MODE_ACTIVATION = os.getenv("ALLOW_TEST_MODE_ACTIVATION", "1") == "1"

# ✅ Rate limits (requests per client IP per window)
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", "10"))
CHECKOUT_RATE_LIMIT = int(os.getenv("CHECKOUT_RATE_LIMIT", "20"))

# ✅ Cron
CRON_SECRET = os.getenv("CRON_SECRET")

# ✅ Stripe price IDs, keyed the way app.core.pricing looks them up
STRIPE_PRICE_IDS = {
    # Seller subscriptions
    "seller_basic_monthly": os.getenv("STRIPE_PRICE_SELLER_BASIC_MONTHLY", ""),
    "seller_basic_yearly": os.getenv("STRIPE_PRICE_SELLER_BASIC_YEARLY", ""),
    "seller_plus_monthly": os.getenv("STRIPE_PRICE_SELLER_PLUS_MONTHLY", ""),
    "seller_plus_yearly": os.getenv("STRIPE_PRICE_SELLER_PLUS_YEARLY", ""),
    "seller_pro_monthly": os.getenv("STRIPE_PRICE_SELLER_PRO_MONTHLY", ""),
    "seller_pro_yearly": os.getenv("STRIPE_PRICE_SELLER_PRO_YEARLY", ""),
    # Contractor subscriptions
    "contractor_verified_monthly": os.getenv("STRIPE_PRICE_CONTRACTOR_VERIFIED_MONTHLY", ""),
    "contractor_verified_yearly": os.getenv("STRIPE_PRICE_CONTRACTOR_VERIFIED_YEARLY", ""),
    "contractor_featured_monthly": os.getenv("STRIPE_PRICE_CONTRACTOR_FEATURED_MONTHLY", ""),
    "contractor_featured_yearly": os.getenv("STRIPE_PRICE_CONTRACTOR_FEATURED_YEARLY", ""),
    "contractor_priority_monthly": os.getenv("STRIPE_PRICE_CONTRACTOR_PRIORITY_MONTHLY", ""),
    "contractor_priority_yearly": os.getenv("STRIPE_PRICE_CONTRACTOR_PRIORITY_YEARLY", ""),
    # Verified seller (one-time, valid 1 year)
    "verified_seller_standard": os.getenv("STRIPE_PRICE_SELLER_VERIFIED", ""),
    "verified_seller_priority": os.getenv("STRIPE_PRICE_PREMIUM_SELLER_VERIFIED", ""),
    # Add-ons
    "addon_featured": os.getenv("STRIPE_PRICE_FEATURED_PLACEMENT", ""),
    "addon_premium": os.getenv("STRIPE_PRICE_PREMIUM_PLACEMENT", ""),
    "addon_elite": os.getenv("STRIPE_PRICE_ELITE_PLACEMENT", ""),
    "addon_ai-enhancement": os.getenv("STRIPE_PRICE_AI_ENHANCEMENT", ""),
    "addon_spec-sheet": os.getenv("STRIPE_PRICE_SPEC_SHEET", ""),
}
