"""
Prize Pool Configuration
Commission rates, entry conversion units and withholding rules
"""

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///prize_pool.db")

# Commission rates per product category, grouped by rate table
STANDARD_RATE_TABLE = "standard"
COMMISSION_RATE_TABLES = {
    STANDARD_RATE_TABLE: {
        "products": Decimal("0.08"),
        "services": Decimal("0.15"),
        "courses": Decimal("0.12"),
    },
}
DEFAULT_COMMISSION_RATE = Decimal(os.getenv("DEFAULT_COMMISSION_RATE", "0.08"))

# Entry conversion: 1 entry per unit of commission balance / loyalty points
AFFILIATE_ENTRY_UNIT = Decimal(os.getenv("AFFILIATE_ENTRY_UNIT", "10000"))
CONSUMER_ENTRY_UNIT = int(os.getenv("CONSUMER_ENTRY_UNIT", "10"))

# Prizes strictly above the threshold are withheld at the flat rate
TAX_WITHHOLDING_THRESHOLD = Decimal(os.getenv("TAX_WITHHOLDING_THRESHOLD", "20000"))
TAX_WITHHOLDING_RATE = Decimal(os.getenv("TAX_WITHHOLDING_RATE", "0.10"))

# Upper bound on winners drawn for a single prize tier
MAX_WINNERS_PER_TIER = int(os.getenv("MAX_WINNERS_PER_TIER", "10000"))

# Referral links
REFERRAL_BASE_URL = os.getenv("REFERRAL_BASE_URL", "https://www.teamtogetherstore.com")
REFERRAL_SESSION_DAYS = int(os.getenv("REFERRAL_SESSION_DAYS", "30"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE")
