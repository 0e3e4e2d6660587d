"""WSGI entry point for production deployment."""
import os
from dotenv import load_dotenv
load_dotenv()

from pesos import create_app
from pesos.scheduler import init_scheduler

app = create_app()

# Run a single worker process: run status and failure backoff live in memory
if os.getenv('ENABLE_SCHEDULER', 'true').lower() == 'true':
    init_scheduler(app)
