"""Background maintenance for regportal sessions."""

from regportal.worker.cleanup import run_cleanup_once, run_forever

__all__ = ["run_cleanup_once", "run_forever"]
