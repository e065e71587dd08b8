"""FastAPI main application for the Rummy game server"""

import logging
import os

from .rules import load_rules_from_env
from .ws.server import create_app

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "info").upper())
logger = logging.getLogger(__name__)

app = create_app(rules=load_rules_from_env())
logger.info("Rummy game server app created")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
