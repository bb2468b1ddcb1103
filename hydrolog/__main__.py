"""Run the service: ``python -m hydrolog``."""
import uvicorn

from hydrolog.core.config import settings


def main():
    uvicorn.run("hydrolog.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
