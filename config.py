import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# multi-document transactions need a replica set
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "").lower() in ("1", "true", "yes")

ALLOW_SEED = os.getenv("ALLOW_SEED", "").lower() in ("1", "true", "yes")

PORT = int(os.getenv("PORT", 8000))
DEBUG = bool(os.getenv("DEBUG"))
