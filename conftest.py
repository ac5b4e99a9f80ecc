"""
Root conftest — sets environment variables before any ride_planner module is
imported so that pydantic-settings instantiates the Settings singleton with
test-safe values during collection (no real .env file, no background
scheduler).
"""
import os

os.environ.setdefault("GOOGLE_MAPS_API_KEY", "AIza-test-key-not-used-in-tests")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DEPOT_ADDRESS", "Náměstí Míru 1, 120 00 Praha")
