"""
Vaccination Portal - Configuration
All values come from the environment (.env supported)
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ==================== DATABASE ====================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./vaccination_portal.db")

# ==================== AUTH ====================

JWT_SECRET = os.getenv("JWT_SECRET", "vaccination-portal-secret-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

# ==================== SCHEDULE ====================

# Days an upcoming dose may sit past its due date before it is flagged overdue.
# 0 means overdue as soon as the due date has passed.
OVERDUE_GRACE_DAYS = int(os.getenv("OVERDUE_GRACE_DAYS", "0"))

SEARCH_MIN_LENGTH = 2
SEARCH_RESULT_LIMIT = int(os.getenv("SEARCH_RESULT_LIMIT", "20"))

# ==================== SERVER ====================

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
