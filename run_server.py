import uvicorn

from placemap.config import ServerConfig
from placemap.observability import configure_logging

if __name__ == "__main__":
    config = ServerConfig.from_env()
    configure_logging(config.log_level)

    print(f"Starting placemap server for {config.year}...")
    print(f"Docs available at: http://{config.host}:{config.port}/docs")

    uvicorn.run(
        "placemap.api.server:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        log_config=None,
    )
