"""
Serverless entry point for the Triage Copilot API
"""
import sys
import os

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("KB_DIR", os.path.join(parent_dir, "kb"))

from mangum import Mangum
from src.main import app

# Lifespan stays on: engines, knowledge base and metrics buffer live on app.state
handler = Mangum(app, lifespan="auto")
