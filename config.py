import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-insecure-change-me")
    DATABASE_PATH = os.getenv("DATABASE_PATH", "library.db")

    # Bearer tokens expire after one hour by default
    TOKEN_MAX_AGE = int(os.getenv("TOKEN_MAX_AGE", "3600"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "password123")

    # Lending rules
    MIN_BORROW_DAYS = 1
    MAX_BORROW_DAYS = 7
    PRICE_PER_DAY = 1.00
    OVERDUE_FINE = 20.00  # flat, added once a book is overdue
