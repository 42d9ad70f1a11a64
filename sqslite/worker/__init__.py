"""
Worker module.
Contains the handler registry and the worker process.
"""

from sqslite.worker.handlers import HandlerRegistry, MessageHandler
from sqslite.worker.main import Worker, run, run_worker

__all__ = [
    "HandlerRegistry",
    "MessageHandler",
    "Worker",
    "run",
    "run_worker",
]
