from __future__ import annotations

import argparse
import sys
import threading
import time
from typing import Optional

import uvicorn

from unifiedauth.core.config import load_config
from unifiedauth.core.errors import ConfigError
from unifiedauth.core.facade import UnifiedAuthFacade
from unifiedauth.core.identity import UserRole
from unifiedauth.core.logger import setup_logging
from unifiedauth.web.api import create_app


class WebServerThread:
    def __init__(self, app, host: str, port: int, logger):
        self.app = app
        self.host = host
        self.port = port
        self.logger = logger
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        cfg = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="info")
        self._server = uvicorn.Server(cfg)

        def run() -> None:
            assert self._server is not None
            self._server.run()

        self._thread = threading.Thread(target=run, name="auth-web", daemon=True)
        self._thread.start()
        self.logger.info(f"Web server started on http://{self.host}:{self.port}")

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=3.0)


def _seed_admin(facade: UnifiedAuthFacade, email: str, password: str, logger) -> None:
    if facade.directory.get_by_email(email) is not None:
        return
    ident = facade.create_user(email, password, display_name="admin", role=UserRole.admin)
    logger.info(f"Seeded admin identity {ident.email} ({ident.id})")


def main() -> int:
    ap = argparse.ArgumentParser(description="Unified authentication service (password, Face ID, QR)")
    ap.add_argument("--config", default="config/auth.json", help="Path to the JSON config file.")
    ap.add_argument("--host", default=None, help="Override web.bind_host.")
    ap.add_argument("--port", type=int, default=None, help="Override web.port.")
    ap.add_argument("--seed-admin", nargs=2, metavar=("EMAIL", "PASSWORD"), help="Create an admin identity in the in-memory directory.")
    ap.add_argument("--verify-audit", action="store_true", help="Verify the audit chain and exit.")
    args = ap.parse_args()

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Config error: {e.user_message} {e.context.get('path', '')}", file=sys.stderr)
        return 2
    logger = setup_logging(cfg.log_dir, level=cfg.log_level)

    facade = UnifiedAuthFacade.build(cfg, logger=logger)
    if args.verify_audit:
        report = facade.verify_audit_integrity()
        print(report.model_dump_json(indent=2))
        facade.close()
        return 0 if report.ok else 1

    if args.seed_admin:
        _seed_admin(facade, args.seed_admin[0], args.seed_admin[1], logger)

    host = args.host or cfg.web.bind_host
    port = int(args.port or cfg.web.port)
    if host not in {"127.0.0.1", "::1", "localhost"} and not cfg.web.allow_remote:
        logger.error(f"Refusing to bind {host}: set web.allow_remote to serve non-local clients.")
        facade.close()
        return 2

    facade.start()
    server = WebServerThread(create_app(facade, cfg.web, logger=logger), host, port, logger)
    if cfg.web.enabled:
        server.start()
    try:
        while server.is_alive() or not cfg.web.enabled:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Shutting down.")
    finally:
        server.stop()
        facade.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
