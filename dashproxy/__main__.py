import logging

import uvicorn

from .config import settings
from .main import application


def main() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    uvicorn.run(application, host=settings.host, port=settings.port,
                log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
