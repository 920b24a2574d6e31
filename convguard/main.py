import argparse

import uvicorn

from convguard.config import settings
from convguard.logging.event_logger import configure_logging

def parse_args() -> argparse.Namespace:
  parser = argparse.ArgumentParser(description='Query API for the conversion monitor.')
  parser.add_argument('--host', default=settings.backend_host, help='Host interface to bind.')
  parser.add_argument('--port', default=settings.backend_port, type=int, help='Port to serve on.')
  parser.add_argument('--reload', action='store_true', help='Enable autoreload (development only).')
  parser.add_argument('--log-level', default=settings.log_level, help='Application and uvicorn log level.')
  return parser.parse_args()

def main() -> None:
  args = parse_args()
  configure_logging(args.log_level)
  uvicorn.run(
    'convguard.api.app:create_app',
    factory=True,
    host=args.host,
    port=args.port,
    log_level=args.log_level,
    reload=args.reload
  )

if __name__ == '__main__':
  main()
