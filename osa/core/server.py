"""Process entry point: ``python -m osa.core.server`` or ``osa-token-service``."""

import uvicorn

from osa.core.app import create_app
from osa.core.logging import configure_logging
from osa.core.settings import IssuerSettings


def main() -> None:
    settings = IssuerSettings()
    configure_logging(service_name="token-service", level=settings.log_level)
    uvicorn.run(
        create_app(settings=settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
