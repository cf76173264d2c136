from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import Settings, settings as default_settings
from .core.log import configure_logging

from .api.routes import router as api_router, ws_router

from .domain.alerts import AlertDispatcher, Thresholds, default_conditions
from .domain.interfaces import Notifier, SerialBackend
from .domain.parser import LineParser
from .drivers.device_sim import SimulatedSerialBackend
from .drivers.notifiers import LogNotifier, SmtpNotifier, WebhookNotifier
from .drivers.serial_port import PySerialBackend, SerialPortConfig
from .services.device_link import DeviceLinkManager
from .services.hub import BroadcastHub
from .services.pipeline import PipelineCoordinator
from .storage.sqlite_repo import SQLiteRepository


logger = logging.getLogger(__name__)


def build_backend(cfg: Settings) -> SerialBackend:
    if cfg.device_mode.lower() == "serial":
        return PySerialBackend(SerialPortConfig(timeout_s=cfg.serial_read_timeout_s))

    # default to sim
    return SimulatedSerialBackend(
        sample_seconds=cfg.sim_sample_seconds,
        failure_rate=cfg.sim_failure_rate,
    )


def build_notifier(cfg: Settings) -> Notifier:
    mode = cfg.notifier_mode.lower()
    if mode == "webhook":
        return WebhookNotifier(cfg.webhook_url, timeout=cfg.webhook_timeout_s)
    if mode == "smtp":
        return SmtpNotifier(
            host=cfg.smtp_host,
            port=cfg.smtp_port,
            sender=cfg.alert_sender,
            recipients=cfg.alert_recipients,
            username=cfg.smtp_user,
            password=cfg.smtp_password,
            use_tls=cfg.smtp_use_tls,
            timeout=cfg.smtp_timeout_s,
        )
    return LogNotifier()


def build_pipeline(
    cfg: Settings,
    backend: SerialBackend,
    notifier: Notifier,
    repo: Optional[SQLiteRepository],
) -> PipelineCoordinator:
    link = DeviceLinkManager(
        backend,
        baudrate=cfg.serial_baudrate,
        vendors=cfg.known_vendors,
    )
    hub = BroadcastHub(
        connected=lambda: link.is_open,
        queue_size=cfg.subscriber_queue_size,
        send_timeout=cfg.subscriber_send_timeout_s,
    )
    alerts = AlertDispatcher(
        notifier,
        conditions=default_conditions(Thresholds(
            high_temperature_c=cfg.high_temperature_c,
            heavy_rain_mm=cfg.heavy_rain_mm,
            low_pressure_hpa=cfg.low_pressure_hpa,
        )),
        cooldown=timedelta(seconds=cfg.alert_cooldown_s),
    )
    pipeline = PipelineCoordinator(
        link=link,
        hub=hub,
        alerts=alerts,
        parser=LineParser(),
        sink=repo,
        reconnect_interval=cfg.reconnect_interval_s,
        persist_every=cfg.persist_every,
    )
    link.on_state_change = pipeline.on_link_state
    return pipeline


def create_app(
    cfg: Optional[Settings] = None,
    backend: Optional[SerialBackend] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.log_level, cfg.log_file)
        logger.info("Starting %s (device_mode=%s notifier=%s)", cfg.app_name, cfg.device_mode, cfg.notifier_mode)

        repo = SQLiteRepository(cfg.sqlite_path)
        await repo.init()

        pipeline = build_pipeline(
            cfg,
            backend or build_backend(cfg),
            notifier or build_notifier(cfg),
            repo,
        )
        app.state.repo = repo
        app.state.pipeline = pipeline
        app.state.hub = pipeline.hub
        await pipeline.start()

        try:
            yield
        finally:
            await pipeline.stop()
            logger.info("Shutdown complete")

    app = FastAPI(title=cfg.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api")
    app.include_router(ws_router)
    return app


app = create_app()


def main() -> None:
    import argparse

    import uvicorn

    p = argparse.ArgumentParser(description="Weather station hub: serial ingestion, WebSocket fan-out, alerts")
    p.add_argument("--host", default="0.0.0.0", help="Bind address")
    p.add_argument("--port", type=int, default=3001, help="HTTP and WebSocket port")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = p.parse_args()

    if args.verbose:
        configure_logging("DEBUG")

    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")


if __name__ == "__main__":
    main()
