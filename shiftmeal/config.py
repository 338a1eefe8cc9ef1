"""
Runtime configuration, read once from the environment.
"""

import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shiftmeal")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "shiftmeal-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "sk_test_your_stripe_key_here")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "whsec_your_webhook_secret_here")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")
CURRENCY = os.getenv("CURRENCY", "usd")

# Email
BRAND_NAME = os.getenv("BRAND_NAME", "ShiftMeal")
BRAND_URL = os.getenv("BRAND_URL", "www.shiftmeal.app")
SENDER_EMAIL = os.getenv("SENDER_EMAIL", "no-reply@shiftmeal.app")
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")

# Reminder sweeps
REMINDERS_ENABLED = os.getenv("REMINDERS_ENABLED", "true").lower() == "true"
REMINDER_TIMEZONE = os.getenv("REMINDER_TIMEZONE", "America/Los_Angeles")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))
