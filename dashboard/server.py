"""
Evidentia Hub - real-time server
FastAPI + Uvicorn + WebSockets for live unit tracking and radio relay

Field units and dashboards share one WebSocket endpoint. Presence and radio
events arrive as JSON envelopes, are applied by the Hub, and fan out to the
other sessions. Radio traffic is also appended to the durable radio log.
"""
import logging
import sys
from pathlib import Path
from typing import Optional

import aiohttp
import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from evidentia import __version__
from evidentia.config import load_config, validate_config, radio_log_configured, setup_logging
from evidentia.exceptions import ConfigError
from evidentia.hub import Hub
from evidentia.log_store import LogStore, LogWriter, NullLogStore, SupabaseLogStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config' / 'config.json'


def create_app(config: Optional[dict] = None, log_store: Optional[LogStore] = None) -> FastAPI:
    """
    Build the hub application.

    Args:
        config: Merged configuration (defaults only if None)
        log_store: Radio log store to use; when None a Supabase store is
            created at startup if credentials are configured
    """
    config = config if config is not None else load_config()
    radio_log = config['radio_log']

    app = FastAPI(title="Evidentia Hub", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config['global'].get('cors_origins', ['*']),
        allow_methods=["*"],
        allow_headers=["*"]
    )

    log_writer = LogWriter(log_store or NullLogStore(), max_pending=radio_log.get('max_pending', 0))
    hub = Hub(
        log_writer=log_writer,
        send_queue_size=config['sessions']['send_queue_size'],
        audio_placeholder=radio_log['audio_placeholder']
    )
    app.state.config = config
    app.state.hub = hub
    app.state.http_session = None

    @app.on_event("startup")
    async def startup_event():
        """Open the radio log connection"""
        if log_store is None and radio_log_configured(config):
            app.state.http_session = aiohttp.ClientSession()
            log_writer.store = SupabaseLogStore(
                url=radio_log['url'],
                key=radio_log['key'],
                http_session=app.state.http_session,
                table=radio_log['table'],
                timeout=radio_log['timeout']
            )
            logger.info(f"📼 Radio log: Supabase table '{radio_log['table']}'")
        elif log_store is None:
            logger.warning("⚠️ Radio log not configured (SUPABASE_URL/SUPABASE_KEY), transmissions will not be persisted")
        logger.info("🚀 Evidentia Hub started!")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close sessions, flush pending log writes, release the HTTP session"""
        hub.shutdown()
        await log_writer.drain(timeout=radio_log['timeout'])
        if app.state.http_session is not None:
            await app.state.http_session.close()
            app.state.http_session = None
        logger.info("Evidentia Hub stopped")

    # REST API endpoints
    @app.get("/")
    async def root():
        """Service banner"""
        return {"message": "Evidentia Hub is running", "status": "Online"}

    @app.get("/api/units")
    async def get_units():
        """Get all active units"""
        return hub.presence.snapshot()

    @app.get("/api/stats")
    async def get_stats():
        """Get hub statistics"""
        return {"stats": hub.get_stats()}

    # WebSocket endpoint
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Real-time channel for presence and radio traffic"""
        # Register before accepting so the session sees every broadcast from the moment it is open
        session = hub.connect(websocket)
        connection_id = session.connection_id
        try:
            await websocket.accept()
            session.start()
            logger.debug(f"WebSocket client connected: {connection_id} (total: {len(hub.sessions)})")

            while True:
                message = await websocket.receive()
                if message['type'] == 'websocket.disconnect':
                    break
                text = message.get('text')
                if text is None and message.get('bytes') is not None:
                    try:
                        text = message['bytes'].decode('utf-8')
                    except UnicodeDecodeError:
                        logger.warning(f"Undecodable binary frame from {connection_id}, ignoring")
                        continue
                if text is not None:
                    hub.handle_frame(connection_id, text)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning(f"WebSocket error on {connection_id}: {e}")
        finally:
            # Close, timeout and transport error all end up here; cleanup runs once
            hub.disconnect(connection_id)
            logger.debug(f"WebSocket client disconnected: {connection_id} (remaining: {len(hub.sessions)})")

    return app


def main(argv=None):
    """Load configuration, set up logging and serve the hub with uvicorn"""
    argv = sys.argv[1:] if argv is None else argv
    config_file = argv[0] if argv else (str(DEFAULT_CONFIG_PATH) if DEFAULT_CONFIG_PATH.exists() else None)

    try:
        config = load_config(config_file)
        validate_config(config)
    except ConfigError as e:
        print(f'✗ {e}')
        sys.exit(1)

    setup_logging(config)
    if config_file is None:
        logger.info("No config file found, using defaults (copy config/config_sample.json to config/config.json)")

    global_config = config['global']
    logger.info(f"📡 Serving on http://{global_config['bind_host']}:{global_config['port']} "
                f"(max frame {global_config['ws_max_size'] // (1024 * 1024)} MB)")

    uvicorn.run(
        create_app(config),
        host=global_config['bind_host'],
        port=global_config['port'],
        ws_max_size=global_config['ws_max_size'],
        log_level="info",
        access_log=False  # Disable access logging (reduces log clutter)
    )


if __name__ == "__main__":
    main()
