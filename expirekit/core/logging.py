import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    # basicConfig is a no-op once the root logger has handlers, so repeat calls only adjust the level
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())
    # uvicorn access lines are noisy next to training logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
