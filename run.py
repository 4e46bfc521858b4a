#!/usr/bin/env python3
"""
FleetRelay - main application entry point
"""
import os
import logging

from fleetrelay import create_app
from fleetrelay.middleware import RequestIdFilter

app = create_app()

_handler = logging.StreamHandler()
_handler.addFilter(RequestIdFilter())
logging.basicConfig(
    level=app.config['LOG_LEVEL'],
    format='%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s',
    handlers=[_handler],
)

if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('DEBUG', 'True').lower() == 'true'

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug
    )
