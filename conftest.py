"""
Root pytest configuration.
Settings are read at import time, so the test environment is set up here
before any application module is imported.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ["EMAIL_USE_CELERY"] = "False"
os.environ["OTP_RESEND_INTERVAL_SECONDS"] = "0"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["REFRESH_SECRET"] = "test-refresh"
