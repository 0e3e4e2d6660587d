#!/usr/bin/env python3
"""Entry point for the PESOS Flask application."""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from pesos import create_app
from pesos.scheduler import init_scheduler, shutdown_scheduler

app = create_app()

# Initialize scheduler for background feed synchronization
if os.getenv('ENABLE_SCHEDULER', 'true').lower() == 'true':
    init_scheduler(app)

if __name__ == '__main__':
    try:
        port = int(os.getenv('PORT', 5000))
        debug = os.getenv('FLASK_ENV') == 'development'
        # The reloader would start a second process with its own run status
        app.run(host='0.0.0.0', port=port, debug=debug, use_reloader=False)
    finally:
        shutdown_scheduler()
