# app/domains/ai/__init__.py
from importlib import import_module


def __getattr__(name: str):
    if name == "router":
        return import_module(".api", __name__).router
    if name == "service":
        return import_module(".service", __name__)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
