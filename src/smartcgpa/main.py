import logging

import uvicorn

from smartcgpa.config.settings import settings


def main() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("smartcgpa.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
