import os
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///affiliate.db")

# Attribution
ATTRIBUTION_WINDOW_DAYS = int(os.getenv("ATTRIBUTION_WINDOW_DAYS", "90"))
VISITOR_ID_TTL_DAYS = int(os.getenv("VISITOR_ID_TTL_DAYS", "365"))
COOKIE_AMB_REF = "amb_ref"
COOKIE_VISITOR_ID = "visitor_id"

# Tiers
TIER_WINDOW_DAYS = int(os.getenv("TIER_WINDOW_DAYS", "30"))
TIER_RECOMPUTE_INTERVAL_HOURS = int(os.getenv("TIER_RECOMPUTE_INTERVAL_HOURS", "24"))

# Cashback
DEFAULT_BUYER_CASHBACK_RATE = Decimal(os.getenv("DEFAULT_BUYER_CASHBACK_RATE", "10"))  # percent
MIN_CASHBACK_WITHDRAWAL = Decimal(os.getenv("MIN_CASHBACK_WITHDRAWAL", "10"))

# Fraud
CLICK_SPAM_THRESHOLD = int(os.getenv("CLICK_SPAM_THRESHOLD", "50"))  # clicks per hour
RAPID_CONVERSION_THRESHOLD = int(os.getenv("RAPID_CONVERSION_THRESHOLD", "20"))  # conversions per 24h

# Postback server
POSTBACK_HOST = os.getenv("POSTBACK_HOST", "0.0.0.0")
POSTBACK_PORT = int(os.getenv("POSTBACK_PORT", "8080"))
POSTBACK_RATE_LIMIT_REQUESTS = int(os.getenv("POSTBACK_RATE_LIMIT_REQUESTS", "120"))
POSTBACK_RATE_LIMIT_WINDOW = int(os.getenv("POSTBACK_RATE_LIMIT_WINDOW", "60"))  # seconds
