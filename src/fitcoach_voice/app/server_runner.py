from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from fitcoach_voice.app.wiring import (
    create_secret_store,
    create_server_providers,
    create_voice_server,
)
from fitcoach_voice.config.settings import AppSettings
from fitcoach_voice.core.storage.secrets import SecretStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeadlessServerRunner:
    settings: AppSettings
    host: str | None = None
    port: int | None = None
    secrets: SecretStore | None = None

    async def run(self) -> int:
        secrets = self.secrets or create_secret_store(self.settings.secrets)
        try:
            providers = create_server_providers(self.settings, secrets=secrets)
        except ValueError as exc:
            logger.error(f"[Server] Provider setup failed: {exc}")
            return 2

        server = create_voice_server(self.settings, providers, host=self.host, port=self.port)
        try:
            await server.serve_forever()
        except (KeyboardInterrupt, asyncio.CancelledError):
            return 0
        except OSError as exc:
            logger.error(f"[Server] Could not listen on {server.host}:{server.port}: {exc}")
            return 1
        finally:
            await providers.close()
        return 0
