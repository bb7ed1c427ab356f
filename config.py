import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop_admin")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

# Deployments disagree on the name of the "done" status
# ("Completed" vs "Booking Successful"), so it is configurable.
ORDER_STATUS_PROCESSING = "Processing"
ORDER_STATUS_COMPLETED = os.getenv("ORDER_COMPLETED_STATUS", "Completed")
ORDER_STATUS_CANCELLED = "Cancelled"
ORDER_STATUSES = (ORDER_STATUS_PROCESSING, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)

SHIPPING_STATUSES = ("Pending", "Shipping", "Delivered")

PAGE_SIZES = (5, 10, 20)
DEFAULT_PAGE_SIZE = 10

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Admin")

PORT = int(os.getenv("PORT", 8000))
