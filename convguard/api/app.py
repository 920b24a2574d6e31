import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from convguard.config import Settings, settings as default_settings
from convguard.conversion.error_recovery import ConversionErrorHandler
from convguard.conversion.events import EventBus
from convguard.conversion.monitor import ConversionMonitor
from convguard.diagnostics.collector import DiagnosticsCollector
from convguard.logging.event_logger import LogSink
from convguard.resources.monitor import ResourceMonitor
from convguard.api.routes import system, monitoring, errors, diagnostics

logger = logging.getLogger(__name__)


def build_engines(settings: Settings):
  """Wires a monitor and error handler that share one log sink and event bus."""
  settings.ensure_directories()
  log_sink = LogSink(settings.log_dir, settings.max_log_file_size, settings.max_log_files)
  resources = ResourceMonitor()
  event_bus = EventBus()
  monitor = ConversionMonitor(
    settings=settings,
    log_sink=log_sink,
    resource_monitor=resources,
    event_bus=event_bus
  )
  error_handler = ConversionErrorHandler(
    settings=settings,
    log_sink=log_sink,
    diagnostics=DiagnosticsCollector(resources, log_sink),
    event_bus=event_bus
  )
  return monitor, error_handler, resources


def create_app(
  monitor: Optional[ConversionMonitor] = None,
  error_handler: Optional[ConversionErrorHandler] = None,
  settings: Optional[Settings] = None
) -> FastAPI:
  settings = settings or default_settings
  resources = None
  if monitor is None or error_handler is None:
    built_monitor, built_handler, resources = build_engines(settings)
    monitor = monitor or built_monitor
    error_handler = error_handler or built_handler
  else:
    resources = monitor.resource_monitor

  app = FastAPI(
    title='convguard',
    version='0.1.0',
    description='Query surface for conversion statistics, errors and diagnostics.'
  )
  app.state.monitor = monitor
  app.state.error_handler = error_handler
  app.state.resources = resources

  app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*']
  )

  @app.exception_handler(Exception)
  async def global_exception_handler(request: Request, exc: Exception):
    logger.error('Unhandled exception on %s: %s', request.url.path, exc, exc_info=True)
    return JSONResponse(
      status_code=500,
      content={'message': 'Internal Server Error', 'detail': str(exc)},
    )

  app.include_router(system.router, tags=['System'])
  app.include_router(monitoring.router, tags=['Monitoring'])
  app.include_router(errors.router, tags=['Errors'])
  app.include_router(diagnostics.router, tags=['Diagnostics'])

  @app.on_event('startup')
  async def startup_event() -> None:
    monitor.start()
    logger.info('convguard API started on %s:%s', settings.backend_host, settings.backend_port)

  @app.on_event('shutdown')
  async def shutdown_event() -> None:
    monitor.shutdown()

  return app
