"""
Serverless entry point for the Unibox SLA API
"""
import sys
import os

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("SLA_MONITOR_CONFIG_PATH", "/tmp/sla_monitor.yaml")
os.environ.setdefault("SLA_EVALUATION_INTERVAL", "0")  # Scheduler off; an external cron calls POST /sla/monitor
os.environ.setdefault("ESCALATION_STATE_BACKEND", "database")

from mangum import Mangum
from src.main import app

# Lifespan wires the monitor per cold start
handler = Mangum(app, lifespan="auto")
